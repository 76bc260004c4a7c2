# app/operations/status.py
from __future__ import annotations

from enum import Enum


class InvalidTransition(Exception):
    pass


class TransactionStatus(str, Enum):
    # in-memory default, never persisted
    UNDEFINED = "undefined"
    PENDING = "pending"
    PENDING_HASH = "pending_hash"
    SUCCESS = "success"
    FAILURE = "failure"
    FAILURE_503 = "failure_503"


TERMINAL = frozenset({TransactionStatus.SUCCESS, TransactionStatus.FAILURE, TransactionStatus.FAILURE_503})

ALLOWED = {
    TransactionStatus.UNDEFINED: {TransactionStatus.PENDING},
    TransactionStatus.PENDING: {
        TransactionStatus.PENDING_HASH,
        TransactionStatus.SUCCESS,
        TransactionStatus.FAILURE,
        TransactionStatus.FAILURE_503,
    },
    # PENDING_HASH->PENDING_HASH allowed when the gateway hands back a new userOpHash
    TransactionStatus.PENDING_HASH: {
        TransactionStatus.PENDING_HASH,
        TransactionStatus.SUCCESS,
        TransactionStatus.FAILURE,
    },
    TransactionStatus.SUCCESS: set(),
    TransactionStatus.FAILURE: set(),
    TransactionStatus.FAILURE_503: set(),
}


def parse_status(value: str | TransactionStatus | None) -> TransactionStatus:
    if isinstance(value, TransactionStatus):
        return value
    if not value:
        return TransactionStatus.UNDEFINED
    return TransactionStatus((value or "").strip().lower())


def assert_transition(old: TransactionStatus, new: TransactionStatus) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal operation transition: {old.value} -> {new.value}")


def is_terminal(status: TransactionStatus) -> bool:
    return status in TERMINAL


def is_success(status: TransactionStatus) -> bool:
    return status == TransactionStatus.SUCCESS


def is_failure(status: TransactionStatus) -> bool:
    return status in (TransactionStatus.FAILURE, TransactionStatus.FAILURE_503)


def is_pending_hash(status: TransactionStatus) -> bool:
    return status == TransactionStatus.PENDING_HASH
