# app/operations/families/rewards.py
"""
Token rewards paid from the treasury wallet.

All reward kinds share the ``ops.rewards`` table and one lifecycle class,
``RewardGrant``. The kind-specific classes only decide who gets paid, how
much, and what counts as the same reward already paid under another event.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from settings import settings
from schemas import IsolatedRewardParams, NewRewardParams
from app.operations.context import ProcessingContext
from app.operations.engine import process_operation
from app.operations.lifecycle import RecordBinding, guarded, utcnow
from app.operations.model import REWARDS, IdempotencyKey
from app.operations.repository import OperationStore
from app.operations.status import TransactionStatus
from app.wallet.base import GatewayResult, WalletGateway, WalletGatewayError
from services.analytics import identify
from services.notifications import relay

logger = logging.getLogger("opsrelay.rewards")

# another in-flight or paid reward blocks a new one; a failed one does not.
# Wider than SUCCESS only: see "Conflicting statuses" in DESIGN.md.
BLOCKING_STATUSES = (
    TransactionStatus.SUCCESS,
    TransactionStatus.PENDING,
    TransactionStatus.PENDING_HASH,
)


class RewardGrant:
    """Lifecycle of one reward row."""

    family = REWARDS

    def __init__(
        self,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        event_id: str,
        reason: str,
        amount: str,
        message: str,
        recipient: dict[str, Any],
        token_address: str,
        chain_id: str,
        relay_url: str,
        extra: Optional[dict[str, Any]] = None,
        relay_extra: Optional[dict[str, Any]] = None,
    ):
        self.gateway = gateway
        self.reason = reason
        self.amount = amount
        self.message = message
        self.recipient = recipient
        self.token_address = token_address
        self.chain_id = chain_id
        self.relay_url = relay_url
        self.extra = dict(extra or {})
        self.relay_extra = dict(relay_extra or {})
        self.record = RecordBinding(
            store,
            REWARDS,
            IdempotencyKey(event_id, recipient["user_telegram_id"], reason),
        )

    def snapshot(self) -> dict[str, Any]:
        out = {
            "eventId": self.record.event_id,
            "userTelegramID": self.recipient["user_telegram_id"],
            "responsePath": self.recipient.get("response_path"),
            "userHandle": self.recipient.get("user_handle"),
            "userName": self.recipient.get("user_name"),
            "walletAddress": self.recipient.get("patchwallet"),
            "reason": self.reason,
            "amount": self.amount,
            "message": self.message,
            "tokenAddress": self.token_address,
            "chainId": self.chain_id,
        }
        out.update(self.extra)
        return out

    def position(
        self,
        now: datetime,
        *,
        conflict: Optional[dict[str, Any]] = None,
    ) -> bool:
        if conflict is not None:
            other = self.record.store.find_other(
                REWARDS,
                exclude_event_id=self.record.event_id,
                discriminator=self.reason,
                statuses=BLOCKING_STATUSES,
                **conflict,
            )
            if other is not None:
                logger.info(
                    "[%s] %s reward for %s already handled by event %s (%s)",
                    self.record.event_id,
                    self.reason,
                    self.recipient["user_telegram_id"],
                    other.event_id,
                    other.status.value,
                )
                return False
        return self.record.load_or_reserve(self.snapshot(), now)

    def send_transaction(self) -> GatewayResult:
        return self.gateway.send_tokens(
            sender_tg_id=settings.SOURCE_TG_ID,
            recipient_wallet=self.recipient["patchwallet"],
            amount=self.amount,
            token_address=self.token_address,
            chain_id=self.chain_id,
        )

    def get_transaction_status(self) -> GatewayResult:
        return self.gateway.get_status(self.record.user_op_hash)

    def update_in_database(self, status: TransactionStatus, date: Optional[datetime]) -> bool:
        return self.record.save(status, date, self.snapshot())

    def notifications(self):
        body = self.snapshot()
        body.update(self.relay_extra)
        body["transactionHash"] = self.record.tx_hash
        body["status"] = self.record.status.value
        body["dateAdded"] = self.record.date_added
        return [relay(self.relay_url, body)]


def _new_user(params) -> dict[str, Any]:
    return {
        "user_telegram_id": params.user_telegram_id,
        "response_path": params.response_path,
        "user_handle": params.user_handle,
        "user_name": params.user_name,
        "patchwallet": params.patchwallet,
    }


class SignUpReward:
    REASON = "user_sign_up"
    AMOUNT = "100"
    MESSAGE = "Sign up reward"

    @classmethod
    def build(
        cls,
        params: NewRewardParams,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        now: datetime | None = None,
    ) -> tuple[RewardGrant, bool]:
        grant = RewardGrant(
            store=store,
            gateway=gateway,
            event_id=params.event_id,
            reason=cls.REASON,
            amount=cls.AMOUNT,
            message=cls.MESSAGE,
            recipient=_new_user(params),
            token_address=params.token_address,
            chain_id=params.chain_id,
            relay_url=settings.FLOWXO_NEW_SIGNUP_REWARD_WEBHOOK,
        )
        ok = grant.position(now or utcnow(), conflict={"user_telegram_id": params.user_telegram_id})
        return grant, ok


class ReferralReward:
    """Pays whoever first sent tokens to the new user."""

    REASON = "2x_reward"
    AMOUNT = "50"
    MESSAGE = "Referral reward"

    @classmethod
    def build(
        cls,
        params: NewRewardParams,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        referent: dict[str, Any],
        parent_tx_hash: Optional[str],
        now: datetime | None = None,
    ) -> tuple[RewardGrant, bool]:
        grant = RewardGrant(
            store=store,
            gateway=gateway,
            event_id=params.event_id,
            reason=cls.REASON,
            amount=cls.AMOUNT,
            message=cls.MESSAGE,
            recipient=referent,
            token_address=params.token_address,
            chain_id=params.chain_id,
            relay_url=settings.FLOWXO_NEW_REFERRAL_REWARD_WEBHOOK,
            extra={
                "newUserAddress": params.patchwallet,
                "parentTransactionHash": parent_tx_hash,
            },
            relay_extra={
                "newUserTgId": params.user_telegram_id,
                "newUserResponsePath": params.response_path,
                "newUserUserHandle": params.user_handle,
                "newUserUserName": params.user_name,
                "newUserPatchwallet": params.patchwallet,
            },
        )
        ok = grant.position(
            now or utcnow(),
            conflict={
                "user_telegram_id": referent["user_telegram_id"],
                "payload_match": {"newUserAddress": params.patchwallet},
            },
        )
        return grant, ok


class LinkReward:
    """Pays the owner of the referral link the new user signed up with."""

    REASON = "referral_link"
    AMOUNT = "10"
    MESSAGE = "Referral link"

    @classmethod
    def build(
        cls,
        params: NewRewardParams,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        referent: dict[str, Any],
        now: datetime | None = None,
    ) -> tuple[RewardGrant, bool]:
        grant = RewardGrant(
            store=store,
            gateway=gateway,
            event_id=params.event_id,
            reason=cls.REASON,
            amount=cls.AMOUNT,
            message=cls.MESSAGE,
            recipient=referent,
            token_address=params.token_address,
            chain_id=params.chain_id,
            relay_url=settings.FLOWXO_NEW_LINK_REWARD_WEBHOOK,
            extra={"sponsoredUserTelegramID": params.user_telegram_id},
        )
        ok = grant.position(
            now or utcnow(),
            conflict={"payload_match": {"sponsoredUserTelegramID": params.user_telegram_id}},
        )
        return grant, ok


class IsolatedReward:
    @classmethod
    def build(
        cls,
        params: IsolatedRewardParams,
        *,
        store: OperationStore,
        gateway: WalletGateway,
        now: datetime | None = None,
    ) -> tuple[RewardGrant, bool]:
        grant = RewardGrant(
            store=store,
            gateway=gateway,
            event_id=params.event_id,
            reason=params.reason,
            amount=params.amount,
            message=params.message or "",
            recipient=_new_user(params),
            token_address=params.token_address,
            chain_id=params.chain_id,
            relay_url=settings.FLOWXO_NEW_ISOLATED_REWARD_WEBHOOK,
        )
        ok = grant.position(now or utcnow(), conflict={"user_telegram_id": params.user_telegram_id})
        return grant, ok


def _referent_with_wallet(ctx: ProcessingContext, tg_id: str) -> Optional[dict[str, Any]]:
    user = ctx.store.get_user(tg_id)
    if not user:
        return None
    if not user.get("patchwallet"):
        user = dict(user)
        user["patchwallet"] = ctx.gateway.resolve_address(tg_id)
    return user


# ==========================================================
# Handlers
# ==========================================================


@guarded
def handle_signup_reward(params: NewRewardParams, ctx: ProcessingContext, now: datetime | None = None) -> bool:
    grant, proceed = SignUpReward.build(params, store=ctx.store, gateway=ctx.gateway, now=now)
    if not proceed:
        return True
    return process_operation(grant, notifier=ctx.notifier, now=now)


@guarded
def handle_referral_reward(params: NewRewardParams, ctx: ProcessingContext, now: datetime | None = None) -> bool:
    parent = ctx.store.earliest_incoming_transfer(params.user_telegram_id)
    if parent is None:
        logger.info("[%s] no referral reward to distribute for new user %s", params.event_id, params.user_telegram_id)
        return True

    try:
        referent = _referent_with_wallet(ctx, parent.user_telegram_id)
    except WalletGatewayError as e:
        logger.warning("[%s] referent %s wallet lookup failed: %s", params.event_id, parent.user_telegram_id, e)
        return False
    if referent is None:
        logger.info("[%s] sender %s of the first transfer is not a user", params.event_id, parent.user_telegram_id)
        return True

    grant, proceed = ReferralReward.build(
        params,
        store=ctx.store,
        gateway=ctx.gateway,
        referent=referent,
        parent_tx_hash=parent.tx_hash,
        now=now,
    )
    if not proceed:
        return True
    return process_operation(grant, notifier=ctx.notifier, now=now)


@guarded
def handle_link_reward(params: NewRewardParams, ctx: ProcessingContext, now: datetime | None = None) -> bool:
    if not params.referent_user_telegram_id:
        return True

    try:
        referent = _referent_with_wallet(ctx, params.referent_user_telegram_id)
    except WalletGatewayError as e:
        logger.warning("[%s] referent %s wallet lookup failed: %s", params.event_id, params.referent_user_telegram_id, e)
        return False
    if referent is None:
        logger.warning("[%s] link referent %s is not a user", params.event_id, params.referent_user_telegram_id)
        return True

    grant, proceed = LinkReward.build(params, store=ctx.store, gateway=ctx.gateway, referent=referent, now=now)
    if not proceed:
        return True
    return process_operation(grant, notifier=ctx.notifier, now=now)


@guarded
def handle_isolated_reward(params: IsolatedRewardParams, ctx: ProcessingContext, now: datetime | None = None) -> bool:
    if not params.patchwallet:
        try:
            wallet = ctx.gateway.resolve_address(params.user_telegram_id)
        except WalletGatewayError as e:
            logger.warning("[%s] wallet lookup for %s failed: %s", params.event_id, params.user_telegram_id, e)
            return False
        params = params.model_copy(update={"patchwallet": wallet})

    grant, proceed = IsolatedReward.build(params, store=ctx.store, gateway=ctx.gateway, now=now)
    if not proceed:
        return True
    return process_operation(grant, notifier=ctx.notifier, now=now)


@guarded
def handle_new_reward(params: NewRewardParams, ctx: ProcessingContext, now: datetime | None = None) -> bool:
    """
    Onboarding of a new user: signup, referral and link rewards as flagged,
    then the user row. Any step that is not finished stops the chain so the
    whole event is delivered again.
    """
    if ctx.store.get_user(params.user_telegram_id):
        logger.info("[%s] user %s already exists", params.event_id, params.user_telegram_id)
        return True

    if not params.patchwallet:
        try:
            wallet = ctx.gateway.resolve_address(params.user_telegram_id)
        except WalletGatewayError as e:
            logger.warning("[%s] wallet lookup for %s failed: %s", params.event_id, params.user_telegram_id, e)
            return False
        params = params.model_copy(update={"patchwallet": wallet})

    if params.is_signup_reward and not handle_signup_reward(params, ctx, now):
        return False
    if params.is_referral_reward and not handle_referral_reward(params, ctx, now):
        return False
    if params.is_link_reward and params.referent_user_telegram_id and not handle_link_reward(params, ctx, now):
        return False

    user = _new_user(params)
    user["date_added"] = now or utcnow()
    if ctx.store.insert_user(**user):
        ctx.notifier.dispatch(params.event_id, [identify(user)])
    return True
