from __future__ import annotations

from contextlib import contextmanager

import pytest

from app.operations.model import IdempotencyKey
from app.operations.repository import OperationStore
from app.operations.status import TransactionStatus


class _FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = conn.rowcount

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))

    def fetchone(self):
        return self.conn.rows.pop(0) if self.conn.rows else None


class _FakeConn:
    def __init__(self, rows=None, rowcount=1):
        self.rows = list(rows or [])
        self.rowcount = rowcount
        self.executed = []

    def cursor(self, cursor_factory=None):
        return _FakeCursor(self)


def _store(conn):
    @contextmanager
    def factory():
        yield conn

    return OperationStore(conn_factory=factory)


KEY = IdempotencyKey("evt-1", "111", "user_sign_up")


def test_unknown_family_rejected():
    with pytest.raises(ValueError):
        _store(_FakeConn()).find("users; drop table", KEY)


def test_save_refuses_undefined():
    with pytest.raises(ValueError):
        _store(_FakeConn()).save(
            "rewards", KEY, status=TransactionStatus.UNDEFINED, tx_hash=None, user_op_hash=None, payload={}
        )


def test_save_guards_terminal_rows():
    conn = _FakeConn(rowcount=0)
    written = _store(conn).save(
        "rewards",
        KEY,
        status=TransactionStatus.SUCCESS,
        tx_hash="0xabc",
        user_op_hash=None,
        payload={"amount": "100"},
    )

    assert written is False
    sql, params = conn.executed[0]
    assert "ON CONFLICT (idempotency_key) DO UPDATE" in sql
    assert "WHERE t.status NOT IN %s" in sql
    assert set(params[-1]) == {"success", "failure", "failure_503"}


def test_reserve_returns_existing_row_on_conflict():
    existing = {
        "idempotency_key": KEY.value,
        "event_id": "evt-1",
        "user_telegram_id": "111",
        "discriminator": "user_sign_up",
        "status": "pending_hash",
        "tx_hash": None,
        "user_op_hash": "op1",
        "date_added": None,
        "payload": {},
    }
    # INSERT ... RETURNING yields nothing, the follow-up SELECT yields the row
    conn = _FakeConn(rows=[None, existing])

    record, created = _store(conn).reserve("rewards", KEY, payload={}, date_added=None)

    assert created is False
    assert record.status == TransactionStatus.PENDING_HASH
    assert record.user_op_hash == "op1"
    assert "ON CONFLICT (idempotency_key) DO NOTHING" in conn.executed[0][0]


def test_find_other_builds_filters():
    conn = _FakeConn()
    _store(conn).find_other(
        "orders",
        exclude_event_id=None,
        user_telegram_id="111",
        discriminator="usd",
        exclude_payload={"quoteId": "q1"},
        statuses=(TransactionStatus.SUCCESS,),
    )

    sql, params = conn.executed[0]
    assert "event_id <>" not in sql
    assert "(payload->>%s) IS DISTINCT FROM %s" in sql
    assert params == ("111", "usd", "quoteId", "q1", ("success",))
