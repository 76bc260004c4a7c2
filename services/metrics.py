from __future__ import annotations

from threading import Lock
from typing import Tuple


_lock = Lock()
_counters: dict[str, dict[Tuple[Tuple[str, str], ...], int]] = {}


def _inc(name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        series = _counters.setdefault(name, {})
        series[key] = int(series.get(key, 0)) + int(value)


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", {"route": route, "status": str(status)})


def increment_operation_outcome(family: str, status: str, done: bool) -> None:
    _inc(
        "operation_outcomes_total",
        {"family": family, "status": status, "done": str(done).lower()},
    )


def increment_gateway_call(action: str, result: str) -> None:
    _inc("wallet_gateway_calls_total", {"action": action, "result": result})


def increment_webhook_event(event: str, accepted: bool) -> None:
    _inc("webhook_events_total", {"event": event, "accepted": str(accepted).lower()})


def increment_notification(sink: str, ok: bool) -> None:
    _inc("notifications_total", {"sink": sink, "ok": str(ok).lower()})


def snapshot() -> dict[str, dict[Tuple[Tuple[str, str], ...], int]]:
    with _lock:
        return {name: dict(series) for name, series in _counters.items()}


def reset() -> None:
    with _lock:
        _counters.clear()


def render_prometheus() -> str:
    lines: list[str] = []
    with _lock:
        for name, series in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for labels, value in sorted(series.items()):
                if labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in labels)
                    lines.append(f"{name}{{{label_str}}} {value}")
                else:
                    lines.append(f"{name} {value}")
    return "\n".join(lines) + ("\n" if lines else "")
