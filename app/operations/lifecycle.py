# app/operations/lifecycle.py
from __future__ import annotations

import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Protocol

from app.operations.model import IdempotencyKey, OperationRecord
from app.operations.repository import OperationStore
from app.operations.status import TransactionStatus, is_success
from app.wallet.base import GatewayResult
from services.notifications import Notification

logger = logging.getLogger("opsrelay.lifecycle")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordBinding:
    """
    Binds one idempotency key of one family table to the in-memory state the
    engine reads and mutates.
    """

    def __init__(self, store: OperationStore, family: str, key: IdempotencyKey):
        self.store = store
        self.family = family
        self.key = key

        self.status = TransactionStatus.UNDEFINED
        self.tx_hash: Optional[str] = None
        self.user_op_hash: Optional[str] = None
        self.date_added: Optional[datetime] = None
        self.in_database = False

    @property
    def event_id(self) -> str:
        return self.key.event_id

    def load(self, record: OperationRecord) -> None:
        self.in_database = True
        self.status = record.status
        self.user_op_hash = record.user_op_hash
        self.tx_hash = record.tx_hash
        self.date_added = record.date_added

    def load_or_reserve(self, payload: dict[str, Any], now: datetime) -> bool:
        """
        Position on the stored record, creating it as PENDING when absent.
        Returns False when the record already succeeded.
        """
        existing = self.store.find(self.family, self.key)
        if existing is None:
            existing, created = self.store.reserve(self.family, self.key, payload=payload, date_added=now)
            if created:
                logger.info("[%s] %s reserved key=%s", self.event_id, self.family, self.key.value)
        self.load(existing)
        return not is_success(self.status)

    def save(self, status: TransactionStatus, date: Optional[datetime], payload: dict[str, Any]) -> bool:
        written = self.store.save(
            self.family,
            self.key,
            status=status,
            tx_hash=self.tx_hash,
            user_op_hash=self.user_op_hash,
            payload=payload,
            date_added=date,
        )
        self.status = status
        if date is not None:
            self.date_added = date
        if written:
            logger.info(
                "[%s] %s stored as %s tx_hash=%s user_op_hash=%s",
                self.event_id,
                self.family,
                status.value,
                self.tx_hash,
                self.user_op_hash,
            )
        else:
            logger.info("[%s] %s already final, %s not written", self.event_id, self.family, status.value)
        return written


def guarded(fn: Callable[..., bool]) -> Callable[..., bool]:
    """
    Handler boundary: an unexpected error becomes ``False`` (try again later)
    so nothing escapes to the delivery layer.
    """

    @functools.wraps(fn)
    def wrapper(params, *args, **kwargs) -> bool:
        try:
            return bool(fn(params, *args, **kwargs))
        except Exception:
            logger.exception("[%s] %s failed", getattr(params, "event_id", "-"), fn.__name__)
            return False

    return wrapper


class OperationLifecycle(Protocol):
    """What the engine needs from one operation family."""

    family: str
    record: RecordBinding

    def send_transaction(self) -> GatewayResult: ...

    def get_transaction_status(self) -> GatewayResult: ...

    def update_in_database(self, status: TransactionStatus, date: Optional[datetime]) -> bool: ...

    def notifications(self) -> Iterable[Optional[Notification]]: ...
