# schemas.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from settings import settings

OrderType = Literal["g1", "usd"]
ORDER_G1 = "g1"
ORDER_USD = "usd"


def _positive_amount(value: Any) -> str:
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError("amount must be a number")
    if not d.is_finite() or d <= 0:
        raise ValueError("amount must be positive")
    return str(value)


PositiveAmount = Annotated[str, BeforeValidator(_positive_amount)]


class _EventParams(BaseModel):
    # upstream payloads are camelCase
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_id: str = Field(alias="eventId", min_length=1)


class _TokenParams(_EventParams):
    chain_id: str = Field(default_factory=lambda: settings.DEFAULT_CHAIN_ID, alias="chainId")
    token_address: str = Field(default_factory=lambda: settings.G1_TOKEN_ADDRESS, alias="tokenAddress")
    token_symbol: str = Field(default_factory=lambda: settings.G1_TOKEN_SYMBOL, alias="tokenSymbol")


# -------- TRANSFERS --------
class TransferParams(_TokenParams):
    sender_tg_id: str = Field(alias="senderTgId", min_length=1)
    recipient_tg_id: str = Field(alias="recipientTgId", min_length=1)
    amount: PositiveAmount
    message: Optional[str] = None


# -------- REWARDS --------
class NewRewardParams(_TokenParams):
    user_telegram_id: str = Field(alias="userTelegramID", min_length=1)
    response_path: Optional[str] = Field(default=None, alias="responsePath")
    user_handle: Optional[str] = Field(default=None, alias="userHandle")
    user_name: Optional[str] = Field(default=None, alias="userName")
    patchwallet: Optional[str] = None
    referent_user_telegram_id: Optional[str] = Field(default=None, alias="referentUserTelegramID")
    is_signup_reward: bool = Field(default=False, alias="isSignupReward")
    is_referral_reward: bool = Field(default=False, alias="isReferralReward")
    is_link_reward: bool = Field(default=False, alias="isLinkReward")


class IsolatedRewardParams(_TokenParams):
    user_telegram_id: str = Field(alias="userTelegramID", min_length=1)
    reason: str = Field(min_length=1)
    amount: PositiveAmount
    message: Optional[str] = None
    response_path: Optional[str] = Field(default=None, alias="responsePath")
    user_handle: Optional[str] = Field(default=None, alias="userHandle")
    user_name: Optional[str] = Field(default=None, alias="userName")
    patchwallet: Optional[str] = None


# -------- VESTING --------
class VestingRecipient(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    recipient_address: str = Field(alias="recipientAddress", min_length=1)
    amount: PositiveAmount


class VestingParams(_TokenParams):
    sender_tg_id: str = Field(alias="senderTgId", min_length=1)
    recipients: List[VestingRecipient] = Field(min_length=1)
    use_vesting: bool = Field(default_factory=lambda: settings.VESTING_USE_VESTING_PLANS, alias="useVesting")


# -------- SWAPS --------
class SwapParams(_EventParams):
    user_telegram_id: str = Field(alias="userTelegramID", min_length=1)
    to: str = Field(min_length=1)
    data: str = Field(min_length=1)
    value: str = "0x00"
    token_in: Optional[str] = Field(default=None, alias="tokenIn")
    amount_in: Optional[str] = Field(default=None, alias="amountIn")
    token_out: Optional[str] = Field(default=None, alias="tokenOut")
    amount_out: Optional[str] = Field(default=None, alias="amountOut")
    price_impact: Optional[str] = Field(default=None, alias="priceImpact")
    gas: Optional[str] = None
    sender: Optional[str] = Field(default=None, alias="from")
    token_in_symbol: Optional[str] = Field(default=None, alias="tokenInSymbol")
    token_out_symbol: Optional[str] = Field(default=None, alias="tokenOutSymbol")
    chain_id: str = Field(default_factory=lambda: settings.DEFAULT_CHAIN_ID, alias="chainId")
    chain_in: Optional[str] = Field(default=None, alias="chainIn")
    chain_out: Optional[str] = Field(default=None, alias="chainOut")


# -------- ORDERS --------
class OrderParams(_EventParams):
    user_telegram_id: str = Field(alias="userTelegramID", min_length=1)
    quote_id: str = Field(alias="quoteId", min_length=1)
    order_type: OrderType = Field(alias="orderType")

    @field_validator("order_type", mode="before")
    @classmethod
    def lower_order_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


# -------- INTAKE --------
class WebhookRequest(BaseModel):
    event: str = Field(min_length=1)
    params: Union[dict[str, Any], List[dict[str, Any]]]


class WebhookAccepted(BaseModel):
    success: bool = True
    event: str
    event_ids: List[str]
