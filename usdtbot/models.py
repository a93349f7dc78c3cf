from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict
from datetime import datetime


class WithdrawalKind(str, Enum):
    REFERRAL = "referral"
    WALLET = "wallet"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TicketStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


@dataclass
class UserRecord:
    id: int
    display_name: str = "User"
    is_registered: bool = False
    referred_by: Optional[int] = None
    referral_earnings: Decimal = Decimal("0")
    wallet: Dict[str, Decimal] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def balance(self, currency: str) -> Decimal:
        return self.wallet.get(currency, Decimal("0"))


@dataclass
class WithdrawalRequest:
    id: int
    user_id: int
    kind: WithdrawalKind
    currency: str
    amount: Decimal
    destination_address: str
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    created_at: Optional[datetime] = None


@dataclass
class SupportTicket:
    id: int
    user_id: int
    message: str
    status: TicketStatus = TicketStatus.OPEN
    created_at: Optional[datetime] = None
