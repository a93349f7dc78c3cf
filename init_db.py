import asyncio
import os
from dotenv import load_dotenv
from usdtbot.db import get_pg_pool, close_pg_pool

load_dotenv()

MIGRATIONS = [
    'migrations/001_init.sql',
]

TABLES = ["users", "wallet_balances", "withdrawal_requests", "support_tickets"]


async def init_db():
    pool = await get_pg_pool()
    async with pool.acquire() as conn:
        # Применяем все миграции по порядку
        for migration_file in MIGRATIONS:
            if os.path.exists(migration_file):
                print(f"Применяем миграцию: {migration_file}")
                with open(migration_file, 'r', encoding='utf-8') as f:
                    sql = f.read()
                await conn.execute(sql)
                print(f"✅ {migration_file} применена успешно!")
            else:
                print(f"❌ Файл миграции не найден: {migration_file}")

        print(f"\n📊 Статистика данных:")
        for table in TABLES:
            count = await conn.fetchval(f"SELECT COUNT(*) FROM {table}")
            print(f"   - {table}: {count}")

    await close_pg_pool()


if __name__ == "__main__":
    asyncio.run(init_db())
