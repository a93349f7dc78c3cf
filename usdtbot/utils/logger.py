"""
Логирование бота и админ-API

setup_logging настраивает корневой логгер один раз при старте процесса,
остальные модули берут logging.getLogger(__name__) и пишут через
хелперы ниже, чтобы строки о пользователях, заявках и внешних API
выглядели одинаково.
"""

import logging
import sys
import time
from functools import wraps
from typing import Callable, Optional

from aiogram.types import CallbackQuery, Message

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Операции дольше этого порога пишутся как WARNING
SLOW_OPERATION_MS = 1000

LEVEL_COLORS = {
    logging.DEBUG: '\033[36m',
    logging.INFO: '\033[32m',
    logging.WARNING: '\033[33m',
    logging.ERROR: '\033[31m',
    logging.CRITICAL: '\033[35m',
}
RESET = '\033[0m'

# Сторонние библиотеки, которые слишком много пишут на INFO
QUIET_LOGGERS = {
    'httpx': logging.WARNING,
    'httpcore': logging.WARNING,
    'apscheduler': logging.WARNING,
    'asyncpg': logging.WARNING,
    'aiogram.event': logging.WARNING,
    'uvicorn.access': logging.WARNING,
}


class LevelColorFormatter(logging.Formatter):
    """Подсвечивает уровень записи ANSI-цветом (только для консоли)"""

    def format(self, record):
        color = LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{RESET}"
        return super().format(record)


def setup_logging(level: str = "INFO", colored: bool = True):
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter_class = LevelColorFormatter if colored and sys.stdout.isatty() else logging.Formatter

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter_class(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    logging.getLogger(__name__).info(f"Logging configured: level={level}")


def _details(details: dict) -> str:
    return ", ".join(f"{k}={v}" for k, v in details.items())


def _describe_update(args) -> tuple:
    """(user_id, вид апдейта, данные) первого Message/CallbackQuery среди аргументов"""
    for arg in args:
        if isinstance(arg, CallbackQuery):
            return arg.from_user.id, "button", arg.data
        if isinstance(arg, Message):
            user_id = arg.from_user.id if arg.from_user else None
            return user_id, "text", arg.text
    return None, None, None


# ============================================================================
# Декоратор для хендлеров aiogram
# ============================================================================

def log_handler(handler_name: Optional[str] = None):
    """Пишет в DEBUG начало и длительность хендлера, в ERROR его падение"""
    def decorator(func: Callable) -> Callable:
        logger = logging.getLogger(func.__module__)
        name = handler_name or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            user_id, kind, data = _describe_update(args)
            logger.debug(f"🎯 [{name}] {kind} from {user_id}: {data!r}")
            started = time.monotonic()
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.monotonic() - started) * 1000
                logger.error(f"❌ [{name}] failed for {user_id} after {elapsed:.0f}ms: {e}", exc_info=True)
                raise
            finally:
                logger.debug(f"✅ [{name}] finished in {(time.monotonic() - started) * 1000:.0f}ms")

        return wrapper
    return decorator


def log_error_with_context(logger, message: str, error: Exception, **context):
    """Ошибка с контекстом (user_id, request_id, ...) и трейсбеком"""
    logger.error(f"{message} [{_details(context)}]: {error}", exc_info=True)


class PerformanceLogger:
    """
    Замер длительности блока кода:

        with PerformanceLogger(logger, "create_deposit"):
            ...
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.started = 0.0

    def __enter__(self):
        self.started = time.monotonic()
        return self

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = self.elapsed_ms
        if exc_type:
            self.logger.error(f"⏱️ {self.operation} failed after {elapsed:.0f}ms: {exc_val}")
        elif elapsed > SLOW_OPERATION_MS:
            self.logger.warning(f"⏱️ {self.operation} took {elapsed:.0f}ms (slow)")
        else:
            self.logger.debug(f"⏱️ {self.operation} took {elapsed:.0f}ms")
        return False


def log_user_action(logger, user_id: int, action: str, **details):
    logger.info(f"👤 User {user_id}: {action} [{_details(details)}]")


def log_withdrawal_event(logger, request_id: int, event: str, **details):
    logger.info(f"💸 Withdrawal #{request_id}: {event} [{_details(details)}]")


def log_api_call(logger, service: str, endpoint: str, duration_ms: float, status: str = "success"):
    if status == "success":
        logger.info(f"🌐 API {service}/{endpoint}: {duration_ms:.0f}ms ✅")
    else:
        logger.error(f"🌐 API {service}/{endpoint}: {duration_ms:.0f}ms ❌ {status}")
