# app/wallet/base.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from app.operations.status import TransactionStatus

# Response codes the wallet service uses for requests it will never accept.
SUBMIT_PERMANENT_CODES = {
    470: TransactionStatus.FAILURE,
    400: TransactionStatus.FAILURE,
    503: TransactionStatus.FAILURE_503,
}
POLL_PERMANENT_CODES = {
    470: TransactionStatus.FAILURE,
}


def _blank_to_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


@dataclass(frozen=True)
class GatewayResult:
    tx_hash: Optional[str] = None
    user_op_hash: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "GatewayResult":
        payload = payload or {}
        return cls(
            tx_hash=_blank_to_none(payload.get("txHash")),
            user_op_hash=_blank_to_none(payload.get("userOpHash")),
        )

    @property
    def empty(self) -> bool:
        return not self.tx_hash and not self.user_op_hash


class WalletGatewayError(Exception):
    """
    Raised by gateway calls. ``response_status`` is the HTTP status the wallet
    service answered with, or None for network errors and timeouts.
    """

    def __init__(self, message: str, response_status: Optional[int] = None):
        super().__init__(message)
        self.response_status = response_status

    def submit_outcome(self) -> Optional[TransactionStatus]:
        """Terminal status for a failed submit, or None when the error is transient."""
        return SUBMIT_PERMANENT_CODES.get(self.response_status)

    def poll_outcome(self) -> Optional[TransactionStatus]:
        return POLL_PERMANENT_CODES.get(self.response_status)


class WalletGateway(Protocol):
    def send_tokens(
        self,
        *,
        sender_tg_id: str,
        recipient_wallet: str,
        amount: str,
        token_address: str,
        chain_id: str,
    ) -> GatewayResult: ...

    def swap_tokens(
        self,
        *,
        user_tg_id: str,
        to: str,
        value: str,
        data: str,
        chain_id: str,
    ) -> GatewayResult: ...

    def lock_tokens(
        self,
        *,
        sender_tg_id: str,
        recipients: list[dict[str, Any]],
        token_address: str,
        chain_id: str,
        use_vesting: bool,
    ) -> GatewayResult: ...

    def get_status(self, user_op_hash: str) -> GatewayResult: ...

    def resolve_address(self, tg_id: str) -> str: ...
