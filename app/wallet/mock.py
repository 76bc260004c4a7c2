# app/wallet/mock.py
from __future__ import annotations

from collections import deque
from typing import Any, Optional, Union

from app.wallet.base import GatewayResult, WalletGatewayError

Outcome = Union[GatewayResult, WalletGatewayError, dict]


class MockWalletGateway:
    """
    Test/dev gateway.

    Outcomes are scripted per call kind: queue a ``GatewayResult`` (or a plain
    ``{"txHash": ..., "userOpHash": ...}`` dict) to answer, or a
    ``WalletGatewayError`` to raise. An empty queue answers with the default.
    Every call is recorded in ``calls`` as ``(kind, kwargs)``.
    """

    def __init__(
        self,
        *,
        submit: Optional[list[Outcome]] = None,
        status: Optional[list[Outcome]] = None,
        addresses: Optional[dict[str, str]] = None,
        default_submit: Outcome | None = None,
        default_status: Outcome | None = None,
    ):
        self._submit = deque(submit or [])
        self._status = deque(status or [])
        self.addresses = dict(addresses or {})
        self.default_submit = default_submit if default_submit is not None else GatewayResult(tx_hash="0xmock")
        self.default_status = default_status if default_status is not None else GatewayResult()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def submit_calls(self) -> list[tuple[str, dict[str, Any]]]:
        return [c for c in self.calls if c[0] in ("send_tokens", "swap_tokens", "lock_tokens")]

    @property
    def status_calls(self) -> list[tuple[str, dict[str, Any]]]:
        return [c for c in self.calls if c[0] == "get_status"]

    @staticmethod
    def _answer(outcome: Outcome) -> GatewayResult:
        if isinstance(outcome, WalletGatewayError):
            raise outcome
        if isinstance(outcome, dict):
            return GatewayResult.from_payload(outcome)
        return outcome

    def _next_submit(self) -> GatewayResult:
        return self._answer(self._submit.popleft() if self._submit else self.default_submit)

    def send_tokens(self, **kwargs) -> GatewayResult:
        self.calls.append(("send_tokens", kwargs))
        return self._next_submit()

    def swap_tokens(self, **kwargs) -> GatewayResult:
        self.calls.append(("swap_tokens", kwargs))
        return self._next_submit()

    def lock_tokens(self, **kwargs) -> GatewayResult:
        self.calls.append(("lock_tokens", kwargs))
        return self._next_submit()

    def get_status(self, user_op_hash: str) -> GatewayResult:
        self.calls.append(("get_status", {"user_op_hash": user_op_hash}))
        return self._answer(self._status.popleft() if self._status else self.default_status)

    def resolve_address(self, tg_id: str) -> str:
        self.calls.append(("resolve_address", {"tg_id": tg_id}))
        try:
            return self.addresses[tg_id]
        except KeyError:
            raise WalletGatewayError(f"no wallet for {tg_id}", response_status=404)
