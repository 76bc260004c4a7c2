# app/operations/families/transfers.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from settings import settings
from schemas import TransferParams
from app.operations.context import ProcessingContext
from app.operations.engine import process_operation
from app.operations.lifecycle import RecordBinding, guarded, utcnow
from app.operations.model import TRANSFERS, IdempotencyKey
from app.operations.repository import OperationStore
from app.operations.status import TransactionStatus
from app.wallet.base import GatewayResult, WalletGateway, WalletGatewayError
from services.analytics import track
from services.notifications import relay

logger = logging.getLogger("opsrelay.transfers")


class TransferOperation:
    """Peer-to-peer token transfer between two Telegram users."""

    family = TRANSFERS

    def __init__(
        self,
        params: TransferParams,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        sender: dict[str, Any],
        recipient_wallet: str,
    ):
        self.params = params
        self.gateway = gateway
        self.sender = sender
        self.recipient_wallet = recipient_wallet
        self.record = RecordBinding(store, TRANSFERS, IdempotencyKey(params.event_id, params.sender_tg_id))

    @classmethod
    def build(
        cls,
        params: TransferParams,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        sender: dict[str, Any],
        recipient_wallet: str,
        now: datetime | None = None,
    ) -> tuple["TransferOperation", bool]:
        op = cls(params, store=store, gateway=gateway, sender=sender, recipient_wallet=recipient_wallet)
        return op, op.record.load_or_reserve(op.snapshot(), now or utcnow())

    def snapshot(self) -> dict[str, Any]:
        p = self.params
        return {
            "eventId": p.event_id,
            "chainId": p.chain_id,
            "tokenSymbol": p.token_symbol,
            "tokenAddress": p.token_address,
            "senderTgId": p.sender_tg_id,
            "senderWallet": self.sender.get("patchwallet"),
            "senderName": self.sender.get("user_name"),
            "senderHandle": self.sender.get("user_handle"),
            "recipientTgId": p.recipient_tg_id,
            "recipientWallet": self.recipient_wallet,
            "tokenAmount": p.amount,
            "message": p.message,
        }

    def send_transaction(self) -> GatewayResult:
        return self.gateway.send_tokens(
            sender_tg_id=self.params.sender_tg_id,
            recipient_wallet=self.recipient_wallet,
            amount=self.params.amount,
            token_address=self.params.token_address,
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
        relay_body = dict(body)
        relay_body["senderResponsePath"] = self.sender.get("response_path")
        return [
            track(self.params.sender_tg_id, "Transfer", body, self.record.date_added),
            relay(settings.FLOWXO_NEW_TRANSACTION_WEBHOOK, relay_body),
        ]


@guarded
def handle_new_transaction(params: TransferParams, ctx: ProcessingContext, now: datetime | None = None) -> bool:
    sender = ctx.store.get_user(params.sender_tg_id)
    if not sender:
        logger.warning("[%s] sender %s is not a user", params.event_id, params.sender_tg_id)
        return True

    try:
        recipient_wallet = ctx.gateway.resolve_address(params.recipient_tg_id)
    except WalletGatewayError as e:
        logger.warning("[%s] recipient %s wallet lookup failed: %s", params.event_id, params.recipient_tg_id, e)
        return False

    op, proceed = TransferOperation.build(
        params,
        store=ctx.store,
        gateway=ctx.gateway,
        sender=sender,
        recipient_wallet=recipient_wallet,
        now=now,
    )
    if not proceed:
        return True
    return process_operation(op, notifier=ctx.notifier, now=now)
