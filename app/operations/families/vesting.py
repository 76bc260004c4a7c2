# app/operations/families/vesting.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from settings import settings
from schemas import VestingParams
from app.operations.context import ProcessingContext
from app.operations.engine import process_operation
from app.operations.lifecycle import RecordBinding, guarded, utcnow
from app.operations.model import VESTINGS, IdempotencyKey
from app.operations.repository import OperationStore
from app.operations.status import TransactionStatus
from app.wallet.base import GatewayResult, WalletGateway
from services.analytics import track
from services.notifications import relay

logger = logging.getLogger("opsrelay.vesting")


class VestingOperation:
    """Batch of Hedgey lockup (or vesting) plans funded by one sender."""

    family = VESTINGS

    def __init__(self, params: VestingParams, *, store: OperationStore, gateway: WalletGateway, sender: dict[str, Any]):
        self.params = params
        self.gateway = gateway
        self.sender = sender
        self.record = RecordBinding(store, VESTINGS, IdempotencyKey(params.event_id, params.sender_tg_id))

    @classmethod
    def build(
        cls,
        params: VestingParams,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        sender: dict[str, Any],
        now: datetime | None = None,
    ) -> tuple["VestingOperation", bool]:
        op = cls(params, store=store, gateway=gateway, sender=sender)
        return op, op.record.load_or_reserve(op.snapshot(), now or utcnow())

    def _recipients(self) -> list[dict[str, str]]:
        return [{"recipientAddress": r.recipient_address, "amount": r.amount} for r in self.params.recipients]

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
            "recipients": self._recipients(),
            "useVesting": p.use_vesting,
        }

    def send_transaction(self) -> GatewayResult:
        return self.gateway.lock_tokens(
            sender_tg_id=self.params.sender_tg_id,
            recipients=self._recipients(),
            token_address=self.params.token_address,
            chain_id=self.params.chain_id,
            use_vesting=self.params.use_vesting,
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
        relay_body["senderResponsePath"] = self.sender.get("response_path")
        return [
            track(self.params.sender_tg_id, "Vesting", body, self.record.date_added),
            relay(settings.FLOWXO_NEW_VESTING_WEBHOOK, relay_body),
        ]


@guarded
def handle_new_vesting(params: VestingParams, ctx: ProcessingContext, now: datetime | None = None) -> bool:
    sender = ctx.store.get_user(params.sender_tg_id)
    if not sender:
        logger.warning("[%s] sender %s is not a user", params.event_id, params.sender_tg_id)
        return True

    op, proceed = VestingOperation.build(params, store=ctx.store, gateway=ctx.gateway, sender=sender, now=now)
    if not proceed:
        return True
    return process_operation(op, notifier=ctx.notifier, now=now)
