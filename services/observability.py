from __future__ import annotations

import logging
from contextvars import ContextVar


_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_event_id: ContextVar[str | None] = ContextVar("event_id", default=None)

LOG_FORMAT = "%(levelname)s %(name)s [%(event_id)s]: %(message)s"


def set_request_id(value: str | None) -> None:
    _request_id.set(value)


def get_request_id() -> str | None:
    return _request_id.get()


def set_event_id(value: str | None) -> None:
    _event_id.set(value)


def get_event_id() -> str | None:
    return _event_id.get()


class ContextFilter(logging.Filter):
    """Stamps every record with the current event id and request id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.event_id = get_event_id() or "-"
        record.request_id = get_request_id() or "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    f = ContextFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(f)
