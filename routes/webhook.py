from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from db import get_conn
from deps.auth import require_api_key
from schemas import WebhookAccepted, WebhookRequest
from app.events.dispatcher import NEW_TRANSACTION, NEW_TRANSACTION_BATCH
from app.events.repository import enqueue_event
from services.metrics import increment_webhook_event

router = APIRouter(prefix="/v1", tags=["webhook"])
logger = logging.getLogger("opsrelay.webhooks")


def _expand(req: WebhookRequest) -> list[tuple[str, str, dict[str, Any]]]:
    """
    One queue item per handler call, each with a fresh event id.
    A transaction batch becomes one ``new_transaction`` per element.
    """
    if req.event == NEW_TRANSACTION_BATCH:
        if not isinstance(req.params, list):
            raise HTTPException(status_code=422, detail="params must be a list for new_transaction_batch")
        items = []
        for p in req.params:
            event_id = str(uuid.uuid4())
            items.append((event_id, NEW_TRANSACTION, {**p, "eventId": event_id}))
        return items

    if not isinstance(req.params, dict):
        raise HTTPException(status_code=422, detail="params must be an object")
    event_id = str(uuid.uuid4())
    return [(event_id, req.event, {**req.params, "eventId": event_id})]


def queue_events(items: list[tuple[str, str, dict[str, Any]]]) -> None:
    with get_conn() as conn:
        for event_id, event, params in items:
            enqueue_event(conn, event_id=event_id, event=event, params=params)


@router.post("/webhook", response_model=WebhookAccepted, dependencies=[Depends(require_api_key)])
def receive_webhook(req: WebhookRequest):
    try:
        items = _expand(req)
    except HTTPException:
        increment_webhook_event(req.event, False)
        raise

    queue_events(items)
    increment_webhook_event(req.event, True)
    logger.info("webhook event=%s queued=%s", req.event, len(items))
    return WebhookAccepted(event=req.event, event_ids=[i[0] for i in items])
