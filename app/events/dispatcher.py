# app/events/dispatcher.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from schemas import IsolatedRewardParams, NewRewardParams, OrderParams, SwapParams, TransferParams, VestingParams
from app.operations.context import ProcessingContext
from app.operations.families.orders import handle_new_order
from app.operations.families.rewards import handle_isolated_reward, handle_new_reward
from app.operations.families.swaps import handle_swap
from app.operations.families.transfers import handle_new_transaction
from app.operations.families.vesting import handle_new_vesting

logger = logging.getLogger("opsrelay.events")

NEW_TRANSACTION = "new_transaction"
NEW_TRANSACTION_BATCH = "new_transaction_batch"

Handler = Callable[..., bool]

HANDLERS: dict[str, tuple[type[BaseModel], Handler]] = {
    NEW_TRANSACTION: (TransferParams, handle_new_transaction),
    "new_reward": (NewRewardParams, handle_new_reward),
    "isolated_reward": (IsolatedRewardParams, handle_isolated_reward),
    "swap": (SwapParams, handle_swap),
    "new_vesting": (VestingParams, handle_new_vesting),
    "new_order": (OrderParams, handle_new_order),
}


def dispatch(event: str, params: Any, ctx: ProcessingContext, *, now: datetime | None = None) -> bool:
    """
    Route one event to its handler. True acknowledges the event, False asks
    for redelivery. Unknown events and invalid params are acknowledged.
    """
    if event == NEW_TRANSACTION_BATCH:
        # normally fanned out at intake; process inline when queued as a batch
        items = params if isinstance(params, list) else []
        results = [dispatch(NEW_TRANSACTION, item, ctx, now=now) for item in items]
        return all(results)

    entry = HANDLERS.get(event)
    if entry is None:
        logger.warning("unknown event %s acknowledged", event)
        return True

    model, handler = entry
    try:
        parsed = model.model_validate(params)
    except ValidationError as e:
        logger.warning("invalid params for %s acknowledged: %s", event, e.errors())
        return True

    return handler(parsed, ctx, now)
