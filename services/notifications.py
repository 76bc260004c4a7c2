from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import requests

from settings import settings
from services.metrics import increment_notification

logger = logging.getLogger("opsrelay.notify")


@dataclass(frozen=True)
class Notification:
    sink: str
    send: Callable[[], Any]


def _jsonable(value: Any) -> Any:
    # record snapshots nest datetimes inside properties/traits
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def post_json(url: str, body: dict[str, Any], headers: dict[str, str] | None = None) -> int:
    resp = requests.post(url, json=_jsonable(body), headers=headers or {}, timeout=settings.NOTIFY_HTTP_TIMEOUT_S)
    resp.raise_for_status()
    return resp.status_code


def relay(url: str, body: dict[str, Any]) -> Optional[Notification]:
    """
    FlowXO relay call carrying the finalized record plus the shared API key.
    Returns None when no relay URL is configured for this kind of operation.
    """
    if not url:
        return None
    payload = dict(body)
    payload["apiKey"] = settings.FLOWXO_WEBHOOK_API_KEY
    return Notification(sink="flowxo", send=lambda: post_json(url, payload))


class NotificationDispatcher:
    """
    Fire-and-forget delivery of notification actions.

    Actions run concurrently on a small thread pool; the caller never waits on
    them. Failures are logged with the event id and counted, nothing else.
    """

    def __init__(self, max_workers: int | None = None):
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers or settings.NOTIFY_MAX_WORKERS,
            thread_name_prefix="notify",
        )

    def dispatch(self, event_id: str, actions: Iterable[Optional[Notification]]) -> list[Future]:
        futures = []
        for action in actions:
            if action is None:
                continue
            fut = self._pool.submit(action.send)
            fut.add_done_callback(self._on_done(event_id, action.sink))
            futures.append(fut)
        return futures

    @staticmethod
    def _on_done(event_id: str, sink: str) -> Callable[[Future], None]:
        def _cb(fut: Future) -> None:
            exc = fut.exception()
            if exc is None:
                increment_notification(sink, True)
                return
            increment_notification(sink, False)
            logger.error("[%s] %s notification failed: %s", event_id, sink, exc)

        return _cb

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
