#app/events/repository.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List

from psycopg2.extensions import connection as PGConn
from psycopg2.extras import Json, RealDictCursor


def enqueue_event(conn: PGConn, *, event_id: str, event: str, params: dict[str, Any]) -> bool:
    """
    Queue one inbound event for the worker. Re-queuing the same event id is a no-op.
    NOTE: caller commits.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO ops.webhook_events (event_id, event, params, status, attempt_count, next_retry_at)
            VALUES (%s, %s, %s, 'PENDING', 0, NULL)
            ON CONFLICT (event_id) DO NOTHING
            """,
            (event_id, event, Json(params)),
        )
        return cur.rowcount == 1


def claim_due(conn: PGConn, *, limit: int, lease_seconds: int) -> List[dict]:
    """
    Lease up to `limit` due events by pushing next_retry_at past the lease.
    NOTE: caller commits. The lease outlives that commit, and rows of a
    worker that died come due again once it expires.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            UPDATE ops.webhook_events e
            SET next_retry_at = NOW() + make_interval(secs => %s),
                updated_at = NOW()
            WHERE e.event_id IN (
                SELECT event_id
                FROM ops.webhook_events
                WHERE status = 'PENDING'
                  AND (next_retry_at IS NULL OR next_retry_at <= NOW())
                ORDER BY created_at ASC
                FOR UPDATE SKIP LOCKED
                LIMIT %s
            )
            RETURNING e.event_id, e.event, e.params, e.attempt_count, e.created_at
            """,
            (lease_seconds, limit),
        )
        return sorted(cur.fetchall(), key=lambda r: r["created_at"])


def mark_finished(conn: PGConn, *, event_id: str, status: str, attempt_count: int, last_error: str | None = None) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE ops.webhook_events
            SET status = %s,
                attempt_count = %s,
                last_error = %s,
                next_retry_at = NULL,
                updated_at = NOW()
            WHERE event_id = %s
            """,
            (status, attempt_count, last_error, event_id),
        )


def reschedule(conn: PGConn, *, event_id: str, attempt_count: int, next_retry_at: datetime, last_error: str | None) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE ops.webhook_events
            SET attempt_count = %s,
                next_retry_at = %s,
                last_error = %s,
                updated_at = NOW()
            WHERE event_id = %s
              AND status = 'PENDING'
            """,
            (attempt_count, next_retry_at, last_error, event_id),
        )
