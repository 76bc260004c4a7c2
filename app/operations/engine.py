# app/operations/engine.py
"""
One step of the submit/confirm protocol shared by every operation family.

``process_operation`` returns True when the event is finished for good
(success, permanent failure, or nothing to do) and False when the delivery
layer must call again later. It never raises.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Union

from settings import settings
from app.operations.lifecycle import OperationLifecycle, utcnow
from app.operations.status import (
    TransactionStatus,
    assert_transition,
    is_pending_hash,
    is_terminal,
)
from app.wallet.base import GatewayResult, WalletGatewayError
from services.metrics import increment_operation_outcome
from services.notifications import NotificationDispatcher
from services.observability import get_event_id, set_event_id

logger = logging.getLogger("opsrelay.engine")


def _timed_out(date_added: Optional[datetime], now: datetime) -> bool:
    if date_added is None:
        return False
    budget = timedelta(minutes=settings.PENDING_HASH_TIMEOUT_MINUTES)
    return now - budget > date_added


def _transition(
    op: OperationLifecycle,
    new: TransactionStatus,
    date: Optional[datetime],
) -> bool:
    assert_transition(op.record.status, new)
    return op.update_in_database(new, date)


def _poll_pending_hash(op: OperationLifecycle, now: datetime) -> Union[bool, GatewayResult]:
    """
    PENDING_HASH branch. Returns the final boolean, or the poll result when it
    carried a txHash.
    """
    rec = op.record

    if _timed_out(rec.date_added, now):
        logger.warning("[%s] %s pending hash timed out (added %s)", rec.event_id, op.family, rec.date_added)
        _transition(op, TransactionStatus.FAILURE, now)
        return True

    if not rec.user_op_hash:
        # no dispatch handle was ever captured; recorded as success without a hash
        logger.warning("[%s] %s pending hash without userOpHash, marking success", rec.event_id, op.family)
        _transition(op, TransactionStatus.SUCCESS, now)
        return True

    try:
        result = op.get_transaction_status()
    except WalletGatewayError as e:
        terminal = e.poll_outcome()
        if terminal is None:
            logger.warning("[%s] %s status poll failed, will retry: %s", rec.event_id, op.family, e)
            return False
        logger.error("[%s] %s status poll rejected status=%s", rec.event_id, op.family, e.response_status)
        _transition(op, terminal, now)
        return True

    if result.tx_hash:
        return result

    if result.user_op_hash and result.user_op_hash != rec.user_op_hash:
        rec.user_op_hash = result.user_op_hash
        _transition(op, TransactionStatus.PENDING_HASH, None)

    return False


def _run(op: OperationLifecycle, notifier: NotificationDispatcher, now: datetime, state: dict) -> bool:
    rec = op.record

    if is_terminal(rec.status):
        return True

    result: Optional[GatewayResult] = None

    if is_pending_hash(rec.status):
        outcome = _poll_pending_hash(op, now)
        if isinstance(outcome, bool):
            return outcome
        result = outcome

    if result is None:
        if rec.status != TransactionStatus.PENDING:
            logger.error("[%s] %s cannot submit from status %s", rec.event_id, op.family, rec.status.value)
            return False

        state["submitted"] = True
        try:
            result = op.send_transaction()
        except WalletGatewayError as e:
            terminal = e.submit_outcome()
            if terminal is None:
                logger.warning("[%s] %s submit failed, will retry: %s", rec.event_id, op.family, e)
                return False
            logger.error("[%s] %s submit rejected status=%s: %s", rec.event_id, op.family, e.response_status, e)
            _transition(op, terminal, now)
            return True

        if not result.tx_hash:
            if result.user_op_hash:
                rec.user_op_hash = result.user_op_hash
                _transition(op, TransactionStatus.PENDING_HASH, None)
            else:
                logger.warning("[%s] %s submit returned no hash", rec.event_id, op.family)
            return False

    rec.tx_hash = result.tx_hash
    if _transition(op, TransactionStatus.SUCCESS, now):
        try:
            notifier.dispatch(rec.event_id, op.notifications())
        except Exception:
            logger.exception("[%s] %s notifications not dispatched", rec.event_id, op.family)
    logger.info("[%s] %s finished tx_hash=%s", rec.event_id, op.family, rec.tx_hash)
    return True


def process_operation(
    op: OperationLifecycle,
    *,
    notifier: NotificationDispatcher,
    now: datetime | None = None,
) -> bool:
    now = now or utcnow()
    previous = get_event_id()
    set_event_id(op.record.event_id)

    state = {"submitted": False}
    try:
        done = _run(op, notifier, now, state)
    except Exception:
        # a crash after a submit must not lead to a second submit
        done = bool(state["submitted"])
        logger.exception(
            "[%s] %s processing crashed (submitted=%s)",
            op.record.event_id,
            op.family,
            state["submitted"],
        )
    finally:
        set_event_id(previous)

    increment_operation_outcome(op.family, op.record.status.value, done)
    return done
