from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from settings import settings
from services.notifications import Notification, post_json


def _headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.SEGMENT_KEY}"}


def track(
    user_id: str,
    event: str,
    properties: dict[str, Any],
    timestamp: datetime | None = None,
) -> Optional[Notification]:
    """Segment ``track`` call. None when analytics is not configured."""
    if not settings.SEGMENT_KEY:
        return None
    body = {
        "userId": user_id,
        "event": event,
        "properties": properties,
        "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
    }
    return Notification(sink="segment", send=lambda: post_json(settings.SEGMENT_TRACK_URL, body, _headers()))


def identify(user: dict[str, Any]) -> Optional[Notification]:
    if not settings.SEGMENT_KEY:
        return None
    added = user.get("date_added") or datetime.now(timezone.utc)
    body = {
        "userId": user["user_telegram_id"],
        "traits": {
            "responsePath": user.get("response_path"),
            "userHandle": user.get("user_handle"),
            "userName": user.get("user_name"),
            "patchwallet": user.get("patchwallet"),
        },
        "timestamp": added.isoformat(),
    }
    return Notification(sink="segment", send=lambda: post_json(settings.SEGMENT_IDENTIFY_URL, body, _headers()))
