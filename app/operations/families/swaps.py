# app/operations/families/swaps.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from settings import settings
from schemas import SwapParams
from app.operations.context import ProcessingContext
from app.operations.engine import process_operation
from app.operations.lifecycle import RecordBinding, guarded, utcnow
from app.operations.model import SWAPS, IdempotencyKey
from app.operations.repository import OperationStore
from app.operations.status import TransactionStatus
from app.wallet.base import GatewayResult, WalletGateway
from services.analytics import track
from services.notifications import relay

logger = logging.getLogger("opsrelay.swaps")


class SwapOperation:
    """Pre-built swap call data executed from the user's own wallet."""

    family = SWAPS

    def __init__(self, params: SwapParams, *, store: OperationStore, gateway: WalletGateway, user: dict[str, Any]):
        self.params = params
        self.gateway = gateway
        self.user = user
        self.record = RecordBinding(store, SWAPS, IdempotencyKey(params.event_id, params.user_telegram_id))

    @classmethod
    def build(
        cls,
        params: SwapParams,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        user: dict[str, Any],
        now: datetime | None = None,
    ) -> tuple["SwapOperation", bool]:
        op = cls(params, store=store, gateway=gateway, user=user)
        return op, op.record.load_or_reserve(op.snapshot(), now or utcnow())

    def snapshot(self) -> dict[str, Any]:
        p = self.params
        return {
            "eventId": p.event_id,
            "chainId": p.chain_id,
            "chainIn": p.chain_in,
            "chainOut": p.chain_out,
            "userTelegramID": p.user_telegram_id,
            "userWallet": self.user.get("patchwallet"),
            "userName": self.user.get("user_name"),
            "userHandle": self.user.get("user_handle"),
            "tokenIn": p.token_in,
            "amountIn": p.amount_in,
            "tokenOut": p.token_out,
            "amountOut": p.amount_out,
            "priceImpact": p.price_impact,
            "gas": p.gas,
            "to": p.to,
            "from": p.sender,
            "tokenInSymbol": p.token_in_symbol,
            "tokenOutSymbol": p.token_out_symbol,
        }

    def send_transaction(self) -> GatewayResult:
        return self.gateway.swap_tokens(
            user_tg_id=self.params.user_telegram_id,
            to=self.params.to,
            value=self.params.value,
            data=self.params.data,
            chain_id=self.params.chain_id,
        )

    def get_transaction_status(self) -> GatewayResult:
        return self.gateway.get_status(self.record.user_op_hash)

    def update_in_database(self, status: TransactionStatus, date: Optional[datetime]) -> bool:
        return self.record.save(status, date, self.snapshot())

    def notifications(self):
        body = self.snapshot()
        body["transactionHash"] = self.record.tx_hash
        body["dateAdded"] = self.record.date_added
        body["status"] = self.record.status.value
        relay_body = dict(body)
        relay_body["userResponsePath"] = self.user.get("response_path")
        return [
            track(self.params.user_telegram_id, "Swap", body, self.record.date_added),
            relay(settings.FLOWXO_NEW_SWAP_WEBHOOK, relay_body),
        ]


@guarded
def handle_swap(params: SwapParams, ctx: ProcessingContext, now: datetime | None = None) -> bool:
    user = ctx.store.get_user(params.user_telegram_id)
    if not user:
        logger.warning("[%s] user %s is not a user", params.event_id, params.user_telegram_id)
        return True

    op, proceed = SwapOperation.build(params, store=ctx.store, gateway=ctx.gateway, user=user, now=now)
    if not proceed:
        return True
    return process_operation(op, notifier=ctx.notifier, now=now)
