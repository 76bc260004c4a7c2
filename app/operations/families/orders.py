# app/operations/families/orders.py
"""
GX token orders: the user pays the treasury either in G1 or in another
token (USD leg), priced by a previously stored quote.

A user gets one successful order per order type. A successful order of the
opposite type under another quote also blocks, since both legs of a quote
are independent events.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from settings import settings
from schemas import ORDER_G1, ORDER_USD, OrderParams
from app.operations.context import ProcessingContext
from app.operations.engine import process_operation
from app.operations.lifecycle import RecordBinding, guarded, utcnow
from app.operations.model import ORDERS, IdempotencyKey
from app.operations.repository import OperationStore
from app.operations.status import TransactionStatus
from app.wallet.base import GatewayResult, WalletGateway

logger = logging.getLogger("opsrelay.orders")

QUOTE_FIELDS = (
    "tokenAmountG1",
    "usdFromUsdInvestment",
    "usdFromG1Investment",
    "usdFromMvu",
    "usdFromTime",
    "equivalentUsdInvested",
    "gxBeforeMvu",
    "gxMvuEffect",
    "gxTimeEffect",
    "GxUsdExchangeRate",
    "standardGxUsdExchangeRate",
    "discountReceived",
    "gxReceived",
    "tokenAmount",
    "chainId",
    "tokenAddress",
)


def _opposite(order_type: str) -> str:
    return ORDER_USD if order_type == ORDER_G1 else ORDER_G1


def _positive(value: Any) -> bool:
    try:
        return Decimal(str(value)) > 0
    except (InvalidOperation, ValueError):
        return False


class OrderOperation:
    family = ORDERS

    def __init__(self, params: OrderParams, *, store: OperationStore, gateway: WalletGateway, quote: dict[str, Any]):
        self.params = params
        self.gateway = gateway
        self.quote = quote
        self.record = RecordBinding(
            store,
            ORDERS,
            IdempotencyKey(params.event_id, params.user_telegram_id, params.order_type),
        )

    @classmethod
    def build(
        cls,
        params: OrderParams,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        quote: dict[str, Any],
        now: datetime | None = None,
    ) -> tuple["OrderOperation", bool]:
        op = cls(params, store=store, gateway=gateway, quote=quote)
        other = op.other_successful_order()
        if other is not None:
            logger.info(
                "[%s] %s order for %s already satisfied by event %s",
                params.event_id,
                params.order_type,
                params.user_telegram_id,
                other.event_id,
            )
            return op, False
        return op, op.record.load_or_reserve(op.snapshot(), now or utcnow())

    def other_successful_order(self):
        store = self.record.store
        p = self.params
        same_type = store.find_other(
            ORDERS,
            exclude_event_id=p.event_id,
            user_telegram_id=p.user_telegram_id,
            discriminator=p.order_type,
            statuses=(TransactionStatus.SUCCESS,),
        )
        if same_type is not None:
            return same_type
        return store.find_other(
            ORDERS,
            exclude_event_id=None,
            user_telegram_id=p.user_telegram_id,
            discriminator=_opposite(p.order_type),
            exclude_payload={"quoteId": p.quote_id},
            statuses=(TransactionStatus.SUCCESS,),
        )

    def snapshot(self) -> dict[str, Any]:
        out = {k: self.quote.get(k) for k in QUOTE_FIELDS}
        out.update(
            {
                "eventId": self.params.event_id,
                "userTelegramID": self.params.user_telegram_id,
                "quoteId": self.params.quote_id,
                "orderType": self.params.order_type,
            }
        )
        return out

    def send_transaction(self) -> GatewayResult:
        if self.params.order_type == ORDER_G1:
            return self.gateway.send_tokens(
                sender_tg_id=self.params.user_telegram_id,
                recipient_wallet=settings.SOURCE_WALLET_ADDRESS,
                amount=self.quote.get("tokenAmountG1") or "",
                token_address=settings.G1_TOKEN_ADDRESS,
                chain_id=settings.DEFAULT_CHAIN_ID,
            )
        return self.gateway.send_tokens(
            sender_tg_id=self.params.user_telegram_id,
            recipient_wallet=settings.SOURCE_WALLET_ADDRESS,
            amount=self.quote.get("tokenAmount") or "",
            token_address=self.quote["tokenAddress"],
            chain_id=self.quote.get("chainId") or settings.DEFAULT_CHAIN_ID,
        )

    def get_transaction_status(self) -> GatewayResult:
        return self.gateway.get_status(self.record.user_op_hash)

    def update_in_database(self, status: TransactionStatus, date: Optional[datetime]) -> bool:
        return self.record.save(status, date, self.snapshot())

    def notifications(self):
        return []


@guarded
def handle_new_order(params: OrderParams, ctx: ProcessingContext, now: datetime | None = None) -> bool:
    if not ctx.store.get_user(params.user_telegram_id):
        logger.warning("[%s] sender %s is not a user", params.event_id, params.user_telegram_id)
        return True

    quote = ctx.store.get_quote(params.user_telegram_id, params.quote_id)
    if not quote:
        logger.warning("[%s] no quote %s for %s", params.event_id, params.quote_id, params.user_telegram_id)
        return True

    if params.order_type == ORDER_USD and not _positive(quote.get("usdFromUsdInvestment")):
        logger.info("[%s] quote %s has no USD leg", params.event_id, params.quote_id)
        return True

    if params.order_type == ORDER_USD and not (
        quote.get("tokenAddress") and _positive(quote.get("tokenAmount"))
    ):
        logger.warning("[%s] quote %s has no USD token or amount", params.event_id, params.quote_id)
        return True

    op, proceed = OrderOperation.build(params, store=ctx.store, gateway=ctx.gateway, quote=quote, now=now)
    if not proceed:
        return True
    return process_operation(op, notifier=ctx.notifier, now=now)
