# app/wallet/patchwallet.py
from __future__ import annotations

import logging
import time
from typing import Any, Optional

import requests

from settings import settings
from app.wallet.base import GatewayResult, WalletGatewayError
from app.wallet.encoding import erc20_approve_data, erc20_transfer_data, hedgey_batch_data, hedgey_plans
from services.metrics import increment_gateway_call

logger = logging.getLogger("opsrelay.wallet")

TOKEN_SAFETY_BUFFER_S = 60
DEFAULT_TOKEN_TTL_S = 3600
ZERO_VALUE = "0x00"

CHAIN_NAMES = {
    "eip155:137": "matic",
    "eip155:59144": "linea",
    "eip155:80001": "maticmum",
}


def chain_name(chain_id: str | None) -> str:
    if not chain_id:
        return CHAIN_NAMES[settings.DEFAULT_CHAIN_ID]
    if chain_id in CHAIN_NAMES.values():
        return chain_id
    try:
        return CHAIN_NAMES[chain_id]
    except KeyError:
        # the wallet service would reject it anyway
        raise WalletGatewayError(f"Unsupported chain: {chain_id}", response_status=400)


def _safe_json(resp: requests.Response) -> dict[str, Any] | None:
    try:
        payload = resp.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class PatchWalletClient:
    """
    HTTP client for the PatchWallet kernel API.

    Submissions go to ``/v1/kernel/tx`` on behalf of ``<prefix>:<telegram id>``
    and answer with ``txHash`` (mined) or only ``userOpHash`` (bundled, poll
    ``/v1/kernel/txStatus`` later). Any non-2xx answer raises
    ``WalletGatewayError`` carrying the status so the engine can classify it.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout_s: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (base_url or settings.WALLET_API_BASE_URL).rstrip("/")
        self.client_id = client_id if client_id is not None else settings.WALLET_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.WALLET_CLIENT_SECRET
        self.timeout_s = timeout_s or settings.WALLET_HTTP_TIMEOUT_S
        self._http = session or requests.Session()
        self._token: Optional[str] = None
        self._token_exp: float = 0.0

    def _user_id(self, tg_id: str) -> str:
        return f"{settings.WALLET_USER_PREFIX}:{tg_id}"

    def _post(self, path: str, body: dict[str, Any], *, action: str, auth: bool = False) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if auth:
            headers["Authorization"] = f"Bearer {self.get_access_token()}"

        url = f"{self.base_url}{path}"
        try:
            resp = self._http.post(url, json=body, headers=headers, timeout=self.timeout_s)
        except requests.RequestException as e:
            increment_gateway_call(action, "network_error")
            logger.warning("wallet %s network error: %s", action, e)
            raise WalletGatewayError(f"{action} request failed: {e}") from e

        if resp.status_code >= 400:
            increment_gateway_call(action, f"http_{resp.status_code}")
            logger.warning("wallet %s rejected status=%s body=%s", action, resp.status_code, (resp.text or "")[:300])
            raise WalletGatewayError(f"{action} HTTP {resp.status_code}", response_status=resp.status_code)

        increment_gateway_call(action, "ok")
        return _safe_json(resp) or {}

    def get_access_token(self) -> str:
        now = time.time()
        if self._token and now < (self._token_exp - TOKEN_SAFETY_BUFFER_S):
            return self._token

        payload = self._post(
            "/v1/auth",
            {"client_id": self.client_id, "client_secret": self.client_secret},
            action="auth",
        )
        token = payload.get("access_token")
        if not token:
            raise WalletGatewayError("auth response missing access_token")

        expires_in = int(payload.get("expires_in") or DEFAULT_TOKEN_TTL_S)
        self._token = token
        self._token_exp = now + max(0, expires_in)
        return self._token

    def resolve_address(self, tg_id: str) -> str:
        payload = self._post("/v1/resolver", {"userIds": self._user_id(tg_id)}, action="resolve")
        try:
            return payload["users"][0]["accountAddress"]
        except (KeyError, IndexError, TypeError):
            raise WalletGatewayError(f"resolver returned no wallet for {tg_id}")

    def _kernel_tx(
        self,
        *,
        tg_id: str,
        chain_id: str | None,
        to: list[str],
        value: list[str],
        data: list[str],
        action: str,
        delegatecall: bool = False,
    ) -> GatewayResult:
        body: dict[str, Any] = {
            "userId": self._user_id(tg_id),
            "chain": chain_name(chain_id),
            "to": to,
            "value": value,
            "data": data,
            "auth": "",
        }
        if delegatecall:
            body["delegatecall"] = 1

        result = GatewayResult.from_payload(self._post("/v1/kernel/tx", body, action=action, auth=True))
        logger.info(
            "wallet %s submitted user=%s tx_hash=%s user_op_hash=%s",
            action,
            tg_id,
            result.tx_hash,
            result.user_op_hash,
        )
        return result

    def send_tokens(
        self,
        *,
        sender_tg_id: str,
        recipient_wallet: str,
        amount: str,
        token_address: str,
        chain_id: str,
    ) -> GatewayResult:
        try:
            data = erc20_transfer_data(recipient_wallet, amount)
        except ValueError as e:
            raise WalletGatewayError(str(e), response_status=400) from e

        return self._kernel_tx(
            tg_id=sender_tg_id,
            chain_id=chain_id,
            to=[token_address],
            value=[ZERO_VALUE],
            data=[data],
            action="send_tokens",
        )

    def swap_tokens(
        self,
        *,
        user_tg_id: str,
        to: str,
        value: str,
        data: str,
        chain_id: str,
    ) -> GatewayResult:
        return self._kernel_tx(
            tg_id=user_tg_id,
            chain_id=chain_id,
            to=[to],
            value=[value],
            data=[data],
            action="swap_tokens",
            delegatecall=True,
        )

    def lock_tokens(
        self,
        *,
        sender_tg_id: str,
        recipients: list[dict[str, Any]],
        token_address: str,
        chain_id: str,
        use_vesting: bool,
    ) -> GatewayResult:
        try:
            total_wei, plans = hedgey_plans(recipients)
        except (KeyError, ValueError) as e:
            raise WalletGatewayError(f"invalid vesting recipients: {e}", response_status=400) from e

        planner = settings.HEDGEY_BATCH_PLANNER_ADDRESS
        return self._kernel_tx(
            tg_id=sender_tg_id,
            chain_id=chain_id,
            to=[token_address, planner],
            value=[ZERO_VALUE, ZERO_VALUE],
            data=[
                erc20_approve_data(planner, total_wei),
                hedgey_batch_data(
                    use_vesting=use_vesting,
                    token_address=token_address,
                    total_wei=total_wei,
                    plans=plans,
                ),
            ],
            action="lock_tokens",
        )

    def get_status(self, user_op_hash: str) -> GatewayResult:
        return GatewayResult.from_payload(
            self._post("/v1/kernel/txStatus", {"userOpHash": user_op_hash}, action="tx_status")
        )
