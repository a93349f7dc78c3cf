"""
HTTP API админки

JSON поверх тех же операций, что и /admin в боте: заявки на вывод
решаются через AdminConsole с той же проверкой прав и compare-and-set.
Авторизация по заголовку X-Admin-Token (ADMIN_API_TOKEN).
"""

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Header, HTTPException, Request

from usdtbot.config import BotConfig, config
from usdtbot.flows.admin import AdminConsole, AdminOutcome
from usdtbot.models import WithdrawalRequest, WithdrawalStatus, SupportTicket, TicketStatus, UserRecord
from usdtbot.services.ledger import Ledger

logger = logging.getLogger(__name__)


def _withdrawal_to_dict(request: WithdrawalRequest) -> dict:
    return {
        "id": request.id,
        "user_id": request.user_id,
        "kind": request.kind.value,
        "currency": request.currency,
        "amount": str(request.amount),
        "destination_address": request.destination_address,
        "status": request.status.value,
        "created_at": request.created_at.isoformat() if request.created_at else None,
    }


def _ticket_to_dict(ticket: SupportTicket) -> dict:
    return {
        "id": ticket.id,
        "user_id": ticket.user_id,
        "message": ticket.message,
        "status": ticket.status.value,
        "created_at": ticket.created_at.isoformat() if ticket.created_at else None,
    }


def _user_to_dict(user: UserRecord) -> dict:
    return {
        "id": user.id,
        "display_name": user.display_name,
        "is_registered": user.is_registered,
        "referred_by": user.referred_by,
        "referral_earnings": str(user.referral_earnings),
        "wallet": {currency: str(balance) for currency, balance in user.wallet.items()},
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def _build_services(app: FastAPI):
    """Сервисы из окружения: леджер, бот для уведомлений, движок с консолью"""
    from aiogram import Bot
    from aiogram.client.default import DefaultBotProperties
    from aiogram.enums import ParseMode
    from aiogram.fsm.storage.redis import RedisStorage

    from usdtbot.bot import build_engine, build_ledger
    from usdtbot.services.notifications import TelegramNotifier

    settings: BotConfig = app.state.settings
    if app.state.ledger is None and settings.LEDGER_BACKEND != "postgres":
        # Отдельный процесс не видит леджер бота в памяти
        logger.error(f"Admin API requires LEDGER_BACKEND=postgres, got {settings.LEDGER_BACKEND!r}")
        raise RuntimeError("Admin API cannot share an in-memory ledger with the bot process")

    bot = Bot(token=settings.BOT_TOKEN, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    storage = RedisStorage.from_url(f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/0")
    ledger = app.state.ledger or await build_ledger(settings)
    engine = build_engine(ledger, TelegramNotifier(bot), storage, settings, bot_id=bot.id)
    app.state.ledger = ledger
    app.state.console = engine.admin
    return bot, storage


def create_app(
    ledger: Optional[Ledger] = None,
    console: Optional[AdminConsole] = None,
    settings: BotConfig = config,
) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.console is not None:
            yield
            return
        bot, storage = await _build_services(app)
        try:
            yield
        finally:
            from usdtbot.db import close_pg_pool
            await close_pg_pool()
            await storage.close()
            await bot.session.close()

    app = FastAPI(title="USDT bot admin API", lifespan=lifespan)
    app.state.settings = settings
    app.state.ledger = ledger if ledger is not None else (console.ledger if console else None)
    app.state.console = console

    # Dependency
    async def get_current_admin(request: Request, x_admin_token: Optional[str] = Header(None)):
        expected = request.app.state.settings.ADMIN_API_TOKEN
        if not expected or not x_admin_token:
            return None
        if not hmac.compare_digest(x_admin_token, expected):
            return None
        return "admin"

    def get_ledger(request: Request) -> Ledger:
        return request.app.state.ledger

    def get_console(request: Request) -> AdminConsole:
        return request.app.state.console

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/stats")
    async def api_stats(user=Depends(get_current_admin), ledger: Ledger = Depends(get_ledger)):
        """API: Статистика бота"""
        if not user:
            raise HTTPException(status_code=401, detail="Unauthorized")
        stats = await ledger.stats()
        stats["total_referral_earnings"] = str(stats["total_referral_earnings"])
        return stats

    @app.get("/api/withdrawals")
    async def api_withdrawals(
        status: Optional[WithdrawalStatus] = None,
        user=Depends(get_current_admin),
        ledger: Ledger = Depends(get_ledger),
    ):
        """API: Заявки на вывод (опционально по статусу)"""
        if not user:
            raise HTTPException(status_code=401, detail="Unauthorized")
        requests = await ledger.list_withdrawals(status)
        return {"withdrawals": [_withdrawal_to_dict(r) for r in requests]}

    async def _decide(request: Request, request_id: int, approve: bool, console: AdminConsole):
        settings: BotConfig = request.app.state.settings
        outcome = await console.decide_withdrawal(
            settings.ADMIN_CHAT_ID, request_id, approve=approve, show_next=False
        )
        if outcome == AdminOutcome.DENIED:
            raise HTTPException(status_code=403, detail="Admin chat is not configured")
        if outcome == AdminOutcome.NOT_FOUND:
            raise HTTPException(status_code=409, detail="not found or already processed")
        withdrawal = await console.ledger.get_withdrawal(request_id)
        logger.info(f"Withdrawal #{request_id} {'approved' if approve else 'rejected'} via web admin")
        return _withdrawal_to_dict(withdrawal)

    @app.post("/api/withdrawals/{request_id}/approve")
    async def api_approve(
        request: Request, request_id: int,
        user=Depends(get_current_admin), console: AdminConsole = Depends(get_console),
    ):
        """API: Одобрить заявку"""
        if not user:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return await _decide(request, request_id, True, console)

    @app.post("/api/withdrawals/{request_id}/reject")
    async def api_reject(
        request: Request, request_id: int,
        user=Depends(get_current_admin), console: AdminConsole = Depends(get_console),
    ):
        """API: Отклонить заявку"""
        if not user:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return await _decide(request, request_id, False, console)

    @app.get("/api/tickets")
    async def api_tickets(
        status: Optional[TicketStatus] = TicketStatus.OPEN,
        user=Depends(get_current_admin),
        ledger: Ledger = Depends(get_ledger),
    ):
        """API: Тикеты поддержки"""
        if not user:
            raise HTTPException(status_code=401, detail="Unauthorized")
        tickets = await ledger.list_tickets(status)
        return {"tickets": [_ticket_to_dict(t) for t in tickets]}

    @app.get("/api/users/{user_id}")
    async def api_user(user_id: int, user=Depends(get_current_admin), ledger: Ledger = Depends(get_ledger)):
        """API: Карточка пользователя"""
        if not user:
            raise HTTPException(status_code=401, detail="Unauthorized")
        record = await ledger.get_user(user_id)
        if record is None:
            raise HTTPException(status_code=404, detail="User not found")
        return _user_to_dict(record)

    return app


app = create_app()
