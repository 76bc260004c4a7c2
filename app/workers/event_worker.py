# app/workers/event_worker.py
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from settings import settings
from db import close_pool, get_conn, init_pool
from app.events.dispatcher import dispatch
from app.events.repository import claim_due, mark_finished, reschedule
from app.operations.context import ProcessingContext
from app.operations.repository import OperationStore
from app.wallet.patchwallet import PatchWalletClient
from services.notifications import NotificationDispatcher
from services.observability import configure_logging, set_event_id

logger = logging.getLogger("opsrelay.worker")

DONE = "DONE"
DROPPED = "DROPPED"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _next_retry_at(attempt_count: int, now: Optional[datetime] = None) -> datetime:
    # 30, 60, 120, 240, 480... capped
    delay = settings.WORKER_BASE_BACKOFF_SECONDS * (2 ** max(0, attempt_count - 1))
    delay = min(delay, settings.WORKER_MAX_BACKOFF_SECONDS)
    return (now or _now()) + timedelta(seconds=delay)


def _stale(row: dict, now: datetime) -> bool:
    # redelivered too often and too old to still matter
    attempts = int(row.get("attempt_count") or 0)
    created = row.get("created_at")
    if attempts <= settings.EVENT_DROP_AFTER_ATTEMPTS or created is None:
        return False
    return created < now - timedelta(hours=settings.EVENT_DROP_AFTER_HOURS)


def build_context() -> ProcessingContext:
    return ProcessingContext(
        store=OperationStore(),
        gateway=PatchWalletClient(),
        notifier=NotificationDispatcher(),
    )


def _handle(row: dict, ctx: ProcessingContext, now: datetime) -> None:
    event_id = str(row["event_id"])
    attempt = int(row.get("attempt_count") or 0) + 1

    if _stale(row, now):
        logger.warning("event %s (%s) dropped after %s attempts", event_id, row["event"], attempt - 1)
        with get_conn() as conn:
            mark_finished(conn, event_id=event_id, status=DROPPED, attempt_count=attempt - 1, last_error="stale")
        return

    set_event_id(event_id)
    try:
        done = dispatch(row["event"], row.get("params") or {}, ctx)
    except Exception as e:
        logger.exception("event %s dispatch crashed", event_id)
        done, err = False, f"{type(e).__name__}: {e}"
    else:
        err = None if done else "not finished"
    finally:
        set_event_id(None)

    if done:
        with get_conn() as conn:
            mark_finished(conn, event_id=event_id, status=DONE, attempt_count=attempt)
        return

    retry_at = _next_retry_at(attempt)
    logger.info("event %s not finished, attempt=%s retry_at=%s", event_id, attempt, retry_at.isoformat())
    with get_conn() as conn:
        reschedule(conn, event_id=event_id, attempt_count=attempt, next_retry_at=retry_at, last_error=err)


def process_once(ctx: ProcessingContext, *, batch_size: int | None = None) -> int:
    now = _now()
    # short claim transaction; each handler and its bookkeeping run after it commits
    with get_conn() as conn:
        rows = claim_due(
            conn,
            limit=batch_size or settings.WORKER_BATCH_SIZE,
            lease_seconds=settings.WORKER_CLAIM_LEASE_SECONDS,
        )
    if rows:
        logger.info("claimed %s events", len(rows))
    for row in rows:
        _handle(row, ctx, now)
    return len(rows)


def run_forever(ctx: ProcessingContext, *, poll_seconds: int | None = None, batch_size: int | None = None) -> None:
    poll = poll_seconds or settings.WORKER_POLL_SECONDS
    logger.info("event worker started poll=%ss", poll)
    while True:
        try:
            n = process_once(ctx, batch_size=batch_size)
        except KeyboardInterrupt:
            raise
        except Exception:
            logger.exception("event worker iteration failed")
            n = 0
        if n == 0:
            time.sleep(poll)


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    init_pool()
    ctx = build_context()
    try:
        run_forever(ctx)
    except KeyboardInterrupt:
        logger.info("event worker exiting")
    finally:
        ctx.notifier.shutdown(wait=True)
        close_pool()


if __name__ == "__main__":
    main()
