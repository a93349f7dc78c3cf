import asyncpg
import os
from dotenv import load_dotenv

from usdtbot.models import (
    UserRecord,
    WithdrawalRequest,
    WithdrawalKind,
    WithdrawalStatus,
    SupportTicket,
    TicketStatus,
)
from usdtbot.repository import LedgerRepository

load_dotenv()

PG_HOST = os.getenv("POSTGRES_HOST", "localhost")
PG_PORT = int(os.getenv("POSTGRES_PORT", 5432))
PG_DB = os.getenv("POSTGRES_DB", "usdtbot")
PG_USER = os.getenv("POSTGRES_USER", "usdtbot")
PG_PASSWORD = os.getenv("POSTGRES_PASSWORD", "usdtbot")

# Глобальный пул подключений
_pg_pool = None

async def get_pg_pool():
    """Получает глобальный пул подключений (singleton)"""
    global _pg_pool
    if _pg_pool is None:
        _pg_pool = await asyncpg.create_pool(
            host=PG_HOST,
            port=PG_PORT,
            user=PG_USER,
            password=PG_PASSWORD,
            database=PG_DB,
            min_size=2,
            max_size=20,
        )
    return _pg_pool

async def close_pg_pool():
    global _pg_pool
    if _pg_pool is not None:
        await _pg_pool.close()
        _pg_pool = None


ADJUST_WALLET_SQL = """
    INSERT INTO wallet_balances (user_id, currency, balance)
    VALUES ($1, $2, $3)
    ON CONFLICT (user_id, currency)
    DO UPDATE SET balance = wallet_balances.balance + EXCLUDED.balance
    RETURNING balance
"""


def _withdrawal_from_row(row) -> WithdrawalRequest:
    return WithdrawalRequest(
        id=row["id"],
        user_id=row["user_id"],
        kind=WithdrawalKind(row["kind"]),
        currency=row["currency"],
        amount=row["amount"],
        destination_address=row["destination_address"],
        status=WithdrawalStatus(row["status"]),
        created_at=row["created_at"],
    )


def _ticket_from_row(row) -> SupportTicket:
    return SupportTicket(
        id=row["id"],
        user_id=row["user_id"],
        message=row["message"],
        status=TicketStatus(row["status"]),
        created_at=row["created_at"],
    )


class PostgresLedgerRepository(LedgerRepository):
    """Леджер в PostgreSQL (схема migrations/001_init.sql)"""

    def __init__(self, pool):
        self.pool = pool

    async def _load_user(self, conn, user_id):
        row = await conn.fetchrow(
            """
            SELECT id, display_name, is_registered, referred_by, referral_earnings, created_at
            FROM users WHERE id = $1
            """,
            user_id,
        )
        if not row:
            return None
        balances = await conn.fetch(
            "SELECT currency, balance FROM wallet_balances WHERE user_id = $1", user_id
        )
        return UserRecord(
            id=row["id"],
            display_name=row["display_name"],
            is_registered=row["is_registered"],
            referred_by=row["referred_by"],
            referral_earnings=row["referral_earnings"],
            wallet={b["currency"]: b["balance"] for b in balances},
            created_at=row["created_at"],
        )

    async def get_user(self, user_id):
        async with self.pool.acquire() as conn:
            return await self._load_user(conn, user_id)

    async def create_user(self, user_id, display_name):
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO users (id, display_name)
                VALUES ($1, $2)
                ON CONFLICT (id) DO NOTHING
                """,
                user_id, display_name,
            )
            return await self._load_user(conn, user_id)

    async def save_profile(self, user):
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE users
                SET display_name = $1, is_registered = $2, referred_by = $3
                WHERE id = $4
                """,
                user.display_name, user.is_registered, user.referred_by, user.id,
            )

    async def list_users(self):
        async with self.pool.acquire() as conn:
            ids = await conn.fetch("SELECT id FROM users ORDER BY created_at, id")
            return [await self._load_user(conn, row["id"]) for row in ids]

    async def adjust_referral_earnings(self, user_id, delta):
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                """
                UPDATE users SET referral_earnings = referral_earnings + $1
                WHERE id = $2
                RETURNING referral_earnings
                """,
                delta, user_id,
            )

    async def adjust_wallet(self, user_id, currency, delta):
        async with self.pool.acquire() as conn:
            return await conn.fetchval(ADJUST_WALLET_SQL, user_id, currency, delta)

    async def add_escrowed_withdrawal(self, user_id, kind, currency, amount, destination_address):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if kind == WithdrawalKind.WALLET:
                    remaining = await conn.fetchval(
                        """
                        UPDATE wallet_balances SET balance = balance - $3
                        WHERE user_id = $1 AND currency = $2 AND balance >= $3
                        RETURNING balance
                        """,
                        user_id, currency, amount,
                    )
                else:
                    remaining = await conn.fetchval(
                        """
                        UPDATE users SET referral_earnings = referral_earnings - $2
                        WHERE id = $1 AND referral_earnings >= $2
                        RETURNING referral_earnings
                        """,
                        user_id, amount,
                    )
                if remaining is None:
                    return None

                row = await conn.fetchrow(
                    """
                    INSERT INTO withdrawal_requests (user_id, kind, currency, amount, destination_address, status)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING *
                    """,
                    user_id, kind.value, currency, amount, destination_address, WithdrawalStatus.PENDING.value,
                )
                return _withdrawal_from_row(row)

    async def get_withdrawal(self, request_id):
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM withdrawal_requests WHERE id = $1", request_id)
            return _withdrawal_from_row(row) if row else None

    async def list_withdrawals(self, status=None):
        async with self.pool.acquire() as conn:
            if status:
                rows = await conn.fetch(
                    "SELECT * FROM withdrawal_requests WHERE status = $1 ORDER BY id", status.value
                )
            else:
                rows = await conn.fetch("SELECT * FROM withdrawal_requests ORDER BY id")
            return [_withdrawal_from_row(row) for row in rows]

    async def transition_withdrawal(self, request_id, expected, new):
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE withdrawal_requests SET status = $1
                WHERE id = $2 AND status = $3
                RETURNING *
                """,
                new.value, request_id, expected.value,
            )
            return _withdrawal_from_row(row) if row else None

    async def reject_withdrawal(self, request_id, refund):
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    UPDATE withdrawal_requests SET status = $1
                    WHERE id = $2 AND status = $3
                    RETURNING *
                    """,
                    WithdrawalStatus.REJECTED.value, request_id, WithdrawalStatus.PENDING.value,
                )
                if not row:
                    return None

                request = _withdrawal_from_row(row)
                if refund and request.kind == WithdrawalKind.WALLET:
                    await conn.fetchval(ADJUST_WALLET_SQL, request.user_id, request.currency, request.amount)
                elif refund:
                    await conn.execute(
                        "UPDATE users SET referral_earnings = referral_earnings + $1 WHERE id = $2",
                        request.amount, request.user_id,
                    )
                return request

    async def add_ticket(self, ticket_id, user_id, message):
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO support_tickets (id, user_id, message, status)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (id) DO NOTHING
                RETURNING *
                """,
                ticket_id, user_id, message, TicketStatus.OPEN.value,
            )
            return _ticket_from_row(row) if row else None

    async def get_ticket(self, ticket_id):
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM support_tickets WHERE id = $1", ticket_id)
            return _ticket_from_row(row) if row else None

    async def list_tickets(self, status=None):
        async with self.pool.acquire() as conn:
            if status:
                rows = await conn.fetch(
                    "SELECT * FROM support_tickets WHERE status = $1 ORDER BY created_at, id", status.value
                )
            else:
                rows = await conn.fetch("SELECT * FROM support_tickets ORDER BY created_at, id")
            return [_ticket_from_row(row) for row in rows]

    async def transition_ticket(self, ticket_id, expected, new):
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE support_tickets SET status = $1
                WHERE id = $2 AND status = $3
                RETURNING *
                """,
                new.value, ticket_id, expected.value,
            )
            return _ticket_from_row(row) if row else None


async def get_pg_repository() -> PostgresLedgerRepository:
    return PostgresLedgerRepository(await get_pg_pool())
