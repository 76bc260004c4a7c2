from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Any
from datetime import datetime

from app.operations.status import TransactionStatus


REWARDS = "rewards"
TRANSFERS = "transfers"
VESTINGS = "vestings"
SWAPS = "swaps"
ORDERS = "orders"

FAMILIES = (REWARDS, TRANSFERS, VESTINGS, SWAPS, ORDERS)


@dataclass(frozen=True)
class IdempotencyKey:
    event_id: str
    user_telegram_id: str = ""
    discriminator: str = ""

    @property
    def value(self) -> str:
        return f"{self.event_id}:{self.user_telegram_id}:{self.discriminator}"


@dataclass(frozen=True)
class OperationRecord:
    idempotency_key: str
    event_id: str
    user_telegram_id: str
    discriminator: str
    status: TransactionStatus
    tx_hash: Optional[str]
    user_op_hash: Optional[str]
    date_added: Optional[datetime]
    payload: dict[str, Any] = field(default_factory=dict)
