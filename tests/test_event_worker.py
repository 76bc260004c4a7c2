from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest

from settings import settings
from app.workers import event_worker


class _Queue:
    def __init__(self, rows):
        self.rows = rows
        self.finished = []
        self.rescheduled = []
        self.open = 0
        self.committed = []
        self.leases = []


@pytest.fixture
def queue(monkeypatch):
    q = _Queue([])

    @contextmanager
    def fake_conn():
        q.open += 1
        try:
            yield object()
        finally:
            q.open -= 1
            q.committed.append(len(q.finished) + len(q.rescheduled))

    def fake_claim(conn, limit, lease_seconds):
        q.leases.append(lease_seconds)
        return q.rows[:limit]

    monkeypatch.setattr(event_worker, "get_conn", fake_conn)
    monkeypatch.setattr(event_worker, "claim_due", fake_claim)

    def record(bucket):
        def _write(conn, **kw):
            assert q.open == 1
            bucket.append(kw)

        return _write

    monkeypatch.setattr(event_worker, "mark_finished", record(q.finished))
    monkeypatch.setattr(event_worker, "reschedule", record(q.rescheduled))
    return q


def _row(event_id="evt-1", attempts=0, created_at=None):
    return {
        "event_id": event_id,
        "event": "new_transaction",
        "params": {"eventId": event_id},
        "attempt_count": attempts,
        "created_at": created_at or datetime.now(timezone.utc),
    }


def test_finished_event_marked_done(monkeypatch, queue, ctx):
    queue.rows = [_row()]
    monkeypatch.setattr(event_worker, "dispatch", lambda event, params, ctx: True)

    assert event_worker.process_once(ctx) == 1
    assert queue.finished == [{"event_id": "evt-1", "status": "DONE", "attempt_count": 1}]
    assert queue.rescheduled == []


def test_unfinished_event_rescheduled_with_backoff(monkeypatch, queue, ctx):
    queue.rows = [_row(attempts=1)]
    monkeypatch.setattr(event_worker, "dispatch", lambda event, params, ctx: False)

    event_worker.process_once(ctx)

    (call,) = queue.rescheduled
    assert call["attempt_count"] == 2
    assert call["last_error"] == "not finished"
    assert call["next_retry_at"] > datetime.now(timezone.utc)
    assert queue.finished == []


def test_dispatch_crash_is_rescheduled(monkeypatch, queue, ctx):
    queue.rows = [_row()]

    def boom(event, params, ctx):
        raise RuntimeError("bad")

    monkeypatch.setattr(event_worker, "dispatch", boom)

    event_worker.process_once(ctx)

    (call,) = queue.rescheduled
    assert call["last_error"] == "RuntimeError: bad"


def test_stale_event_dropped_without_dispatch(monkeypatch, queue, ctx):
    old = datetime.now(timezone.utc) - timedelta(hours=settings.EVENT_DROP_AFTER_HOURS + 1)
    queue.rows = [_row(attempts=settings.EVENT_DROP_AFTER_ATTEMPTS + 1, created_at=old)]

    def never(event, params, ctx):
        raise AssertionError("dispatched a stale event")

    monkeypatch.setattr(event_worker, "dispatch", never)

    event_worker.process_once(ctx)

    (call,) = queue.finished
    assert call["status"] == "DROPPED"
    assert call["last_error"] == "stale"


def test_old_event_with_few_attempts_still_processed(monkeypatch, queue, ctx):
    old = datetime.now(timezone.utc) - timedelta(days=3)
    queue.rows = [_row(attempts=1, created_at=old)]
    monkeypatch.setattr(event_worker, "dispatch", lambda event, params, ctx: True)

    event_worker.process_once(ctx)
    assert queue.finished[0]["status"] == "DONE"


def test_backoff_doubles_and_caps():
    now = datetime(2026, 10, 19, tzinfo=timezone.utc)
    base = settings.WORKER_BASE_BACKOFF_SECONDS

    assert event_worker._next_retry_at(1, now) == now + timedelta(seconds=base)
    assert event_worker._next_retry_at(3, now) == now + timedelta(seconds=base * 4)
    assert event_worker._next_retry_at(50, now) == now + timedelta(seconds=settings.WORKER_MAX_BACKOFF_SECONDS)


def test_claim_committed_before_dispatch(monkeypatch, queue, ctx):
    queue.rows = [_row("evt-1"), _row("evt-2")]
    seen = []

    def dispatch(event, params, ctx):
        # no queue transaction may be open while a handler talks to the wallet
        seen.append((params["eventId"], queue.open))
        return params["eventId"] == "evt-1"

    monkeypatch.setattr(event_worker, "dispatch", dispatch)

    assert event_worker.process_once(ctx) == 2

    assert seen == [("evt-1", 0), ("evt-2", 0)]
    assert queue.leases == [settings.WORKER_CLAIM_LEASE_SECONDS]
    # claim, DONE for evt-1, reschedule for evt-2: each in its own transaction
    assert queue.committed == [0, 1, 2]
    assert [c["event_id"] for c in queue.finished] == ["evt-1"]
    assert [c["event_id"] for c in queue.rescheduled] == ["evt-2"]


def test_empty_claim_dispatches_nothing(monkeypatch, queue, ctx):
    monkeypatch.setattr(event_worker, "dispatch", lambda event, params, ctx: pytest.fail("dispatched"))

    assert event_worker.process_once(ctx) == 0
    assert queue.committed == [0]


def test_claim_due_leases_rows_in_created_order():
    from app.events.repository import claim_due

    later = datetime(2026, 10, 19, 12, 5, tzinfo=timezone.utc)
    earlier = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    class _Cur:
        def __init__(self):
            self.executed = []

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def execute(self, sql, params=None):
            self.executed.append((" ".join(sql.split()), params))

        def fetchall(self):
            return [{"event_id": "b", "created_at": later}, {"event_id": "a", "created_at": earlier}]

    cur = _Cur()

    class _Conn:
        def cursor(self, cursor_factory=None):
            return cur

    rows = claim_due(_Conn(), limit=10, lease_seconds=900)

    assert [r["event_id"] for r in rows] == ["a", "b"]
    sql, params = cur.executed[0]
    assert sql.startswith("UPDATE ops.webhook_events")
    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "RETURNING" in sql
    assert params == (900, 10)
