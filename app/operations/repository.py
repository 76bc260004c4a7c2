# app/operations/repository.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, ContextManager, Iterable, Optional

from psycopg2.extras import Json, RealDictCursor

from db import get_conn
from app.operations.model import FAMILIES, IdempotencyKey, OperationRecord
from app.operations.status import TERMINAL, TransactionStatus, parse_status

logger = logging.getLogger("opsrelay.store")

_COLUMNS = """
  idempotency_key, event_id, user_telegram_id, discriminator,
  status, tx_hash, user_op_hash, date_added, payload
"""

_TERMINAL_VALUES = tuple(s.value for s in TERMINAL)


def _table(family: str) -> str:
    # family names are interpolated into SQL, never accept anything else
    if family not in FAMILIES:
        raise ValueError(f"Unknown operation family: {family}")
    return f"ops.{family}"


def _to_record(row: dict[str, Any] | None) -> OperationRecord | None:
    if not row:
        return None
    return OperationRecord(
        idempotency_key=row["idempotency_key"],
        event_id=row["event_id"],
        user_telegram_id=row.get("user_telegram_id") or "",
        discriminator=row.get("discriminator") or "",
        status=parse_status(row.get("status")),
        tx_hash=row.get("tx_hash"),
        user_op_hash=row.get("user_op_hash"),
        date_added=row.get("date_added"),
        payload=dict(row.get("payload") or {}),
    )


class OperationStore:
    """
    PostgreSQL-backed operation records, one table per family.

    The store handle is created by the entry point and passed explicitly to
    lifecycle objects and handlers. Every method opens its own short
    transaction through ``conn_factory``.
    """

    def __init__(self, conn_factory: Callable[[], ContextManager] = get_conn):
        self._conn_factory = conn_factory

    # ==========================================================
    # Operation records
    # ==========================================================

    def find(self, family: str, key: IdempotencyKey) -> OperationRecord | None:
        with self._conn_factory() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM {_table(family)} WHERE idempotency_key = %s",
                    (key.value,),
                )
                return _to_record(cur.fetchone())

    def reserve(
        self,
        family: str,
        key: IdempotencyKey,
        *,
        payload: dict[str, Any],
        date_added: datetime,
    ) -> tuple[OperationRecord, bool]:
        """
        Atomically create the PENDING record for ``key``.

        Returns ``(record, created)``. When a concurrent delivery already
        inserted the row, nothing is written and the existing row comes back
        with ``created=False``.
        """
        with self._conn_factory() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    INSERT INTO {_table(family)} (
                      idempotency_key, event_id, user_telegram_id, discriminator,
                      status, tx_hash, user_op_hash, date_added, payload, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, NULL, NULL, %s, %s, now())
                    ON CONFLICT (idempotency_key) DO NOTHING
                    RETURNING {_COLUMNS}
                    """,
                    (
                        key.value,
                        key.event_id,
                        key.user_telegram_id,
                        key.discriminator,
                        TransactionStatus.PENDING.value,
                        date_added,
                        Json(payload),
                    ),
                )
                row = cur.fetchone()
                if row:
                    return _to_record(row), True

                cur.execute(
                    f"SELECT {_COLUMNS} FROM {_table(family)} WHERE idempotency_key = %s",
                    (key.value,),
                )
                existing = _to_record(cur.fetchone())

        if existing is None:
            # row vanished between the conflict and the read; never deleted by us
            raise RuntimeError(f"reserve lost record {family}/{key.value}")
        logger.info("reserve raced family=%s key=%s status=%s", family, key.value, existing.status.value)
        return existing, False

    def save(
        self,
        family: str,
        key: IdempotencyKey,
        *,
        status: TransactionStatus,
        tx_hash: Optional[str],
        user_op_hash: Optional[str],
        payload: dict[str, Any],
        date_added: Optional[datetime] = None,
    ) -> bool:
        """
        Upsert status + all in-memory fields.
        ``date_added`` is only applied when not None. Rows already terminal are left untouched.
        """
        if status == TransactionStatus.UNDEFINED:
            raise ValueError("UNDEFINED status is never persisted")

        with self._conn_factory() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {_table(family)} AS t (
                      idempotency_key, event_id, user_telegram_id, discriminator,
                      status, tx_hash, user_op_hash, date_added, payload, updated_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, COALESCE(%s, now()), %s, now())
                    ON CONFLICT (idempotency_key) DO UPDATE
                    SET
                      status = EXCLUDED.status,
                      tx_hash = EXCLUDED.tx_hash,
                      user_op_hash = EXCLUDED.user_op_hash,
                      payload = EXCLUDED.payload,
                      date_added = COALESCE(%s, t.date_added),
                      updated_at = now()
                    WHERE t.status NOT IN %s
                    """,
                    (
                        key.value,
                        key.event_id,
                        key.user_telegram_id,
                        key.discriminator,
                        status.value,
                        tx_hash,
                        user_op_hash,
                        date_added,
                        Json(payload),
                        date_added,
                        _TERMINAL_VALUES,
                    ),
                )
                return cur.rowcount == 1

    def find_other(
        self,
        family: str,
        *,
        exclude_event_id: str | None,
        user_telegram_id: str | None = None,
        discriminator: str | None = None,
        payload_match: dict[str, Any] | None = None,
        exclude_payload: dict[str, Any] | None = None,
        statuses: Iterable[TransactionStatus] | None = None,
    ) -> OperationRecord | None:
        """
        Duplicate/conflict lookup: a record for the same logical action under another event.
        """
        where = ["TRUE"]
        params: list[Any] = []

        if exclude_event_id is not None:
            where.append("event_id <> %s")
            params.append(exclude_event_id)
        if user_telegram_id is not None:
            where.append("user_telegram_id = %s")
            params.append(user_telegram_id)
        if discriminator is not None:
            where.append("discriminator = %s")
            params.append(discriminator)
        if payload_match:
            where.append("payload @> %s::jsonb")
            params.append(Json(payload_match))
        for k, v in (exclude_payload or {}).items():
            where.append("(payload->>%s) IS DISTINCT FROM %s")
            params.extend([k, v])
        if statuses is not None:
            where.append("status IN %s")
            params.append(tuple(s.value for s in statuses))

        with self._conn_factory() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM {_table(family)}
                    WHERE {" AND ".join(where)}
                    ORDER BY date_added ASC
                    LIMIT 1
                    """,
                    tuple(params),
                )
                return _to_record(cur.fetchone())

    def earliest_incoming_transfer(self, recipient_tg_id: str) -> OperationRecord | None:
        """
        First transfer ever sent to ``recipient_tg_id`` by somebody else.
        """
        with self._conn_factory() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM ops.transfers
                    WHERE payload->>'recipientTgId' = %s
                      AND user_telegram_id <> %s
                    ORDER BY date_added ASC
                    LIMIT 1
                    """,
                    (recipient_tg_id, recipient_tg_id),
                )
                return _to_record(cur.fetchone())

    # ==========================================================
    # Reference data
    # ==========================================================

    def get_user(self, user_telegram_id: str) -> dict[str, Any] | None:
        with self._conn_factory() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT user_telegram_id, patchwallet, response_path, user_handle, user_name, date_added
                    FROM ops.users
                    WHERE user_telegram_id = %s
                    """,
                    (user_telegram_id,),
                )
                row = cur.fetchone()
                return dict(row) if row else None

    def insert_user(
        self,
        *,
        user_telegram_id: str,
        patchwallet: str | None,
        response_path: str | None,
        user_handle: str | None,
        user_name: str | None,
        date_added: datetime,
    ) -> bool:
        with self._conn_factory() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO ops.users (
                      user_telegram_id, patchwallet, response_path, user_handle, user_name, date_added
                    )
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (user_telegram_id) DO NOTHING
                    """,
                    (user_telegram_id, patchwallet, response_path, user_handle, user_name, date_added),
                )
                return cur.rowcount == 1

    def get_quote(self, user_telegram_id: str, quote_id: str) -> dict[str, Any] | None:
        with self._conn_factory() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT quote_id, user_telegram_id, payload, date_added
                    FROM ops.gx_quotes
                    WHERE user_telegram_id = %s
                      AND quote_id = %s
                    """,
                    (user_telegram_id, quote_id),
                )
                row = cur.fetchone()
                if not row:
                    return None
                quote = dict(row.get("payload") or {})
                quote["quoteId"] = row["quote_id"]
                quote["userTelegramID"] = row["user_telegram_id"]
                return quote
