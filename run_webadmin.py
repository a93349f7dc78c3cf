#!/usr/bin/env python3
"""
Скрипт для запуска веб-админки в режиме разработки
"""

import os
import sys
import uvicorn
from pathlib import Path

# Добавляем корневую директорию проекта в PYTHONPATH
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))


def main():
    """Запуск веб-админки"""
    port = int(os.getenv("WEBADMIN_PORT", 8000))
    print("🚀 Запуск веб-админки...")
    print(f"📊 API будет доступно по адресу: http://localhost:{port}/docs")
    print("🔐 Авторизация: заголовок X-Admin-Token (ADMIN_API_TOKEN)")
    print("⏹️  Для остановки нажмите Ctrl+C")
    print("-" * 50)

    uvicorn.run(
        "usdtbot.web_admin.main:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        reload_dirs=["usdtbot"],
        log_level="info"
    )


if __name__ == "__main__":
    main()
