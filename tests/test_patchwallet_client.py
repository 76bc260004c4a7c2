from __future__ import annotations

import json

import pytest
import requests

from app.wallet.base import WalletGatewayError
from app.wallet.patchwallet import PatchWalletClient, chain_name
from services import metrics

RECIPIENT = "0x" + "22" * 20
TOKEN = "0xe36BD65609c08Cd17b53520293523CF4560533d0"


class _FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = json.dumps(self._payload)

    def json(self):
        return self._payload


class _FakeSession:
    """Answers by path; records every call."""

    def __init__(self, routes: dict):
        self.routes = routes
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        path = url.split("paymagic.test", 1)[1]
        self.calls.append({"path": path, "json": json, "headers": headers or {}})
        answer = self.routes[path]
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, list):
            return answer.pop(0)
        return answer


def _client(routes: dict) -> tuple[PatchWalletClient, _FakeSession]:
    session = _FakeSession(routes)
    client = PatchWalletClient(
        base_url="https://paymagic.test",
        client_id="cid",
        client_secret="secret",
        session=session,
    )
    return client, session


def _auth_ok():
    return _FakeResponse(200, {"access_token": "token-123", "expires_in": 3600})


def test_send_tokens_posts_kernel_tx_with_bearer():
    client, session = _client(
        {
            "/v1/auth": _auth_ok(),
            "/v1/kernel/tx": _FakeResponse(200, {"txHash": "0xabc", "userOpHash": "op1"}),
        }
    )

    result = client.send_tokens(
        sender_tg_id="111",
        recipient_wallet=RECIPIENT,
        amount="1",
        token_address=TOKEN,
        chain_id="eip155:137",
    )

    assert result.tx_hash == "0xabc"
    assert result.user_op_hash == "op1"

    auth, tx = session.calls
    assert auth["json"] == {"client_id": "cid", "client_secret": "secret"}
    assert tx["headers"]["Authorization"] == "Bearer token-123"
    body = tx["json"]
    assert body["userId"] == "grindery:111"
    assert body["chain"] == "matic"
    assert body["to"] == [TOKEN]
    assert body["value"] == ["0x00"]
    assert body["data"][0].startswith("0xa9059cbb")
    assert body["auth"] == ""
    assert "delegatecall" not in body


def test_access_token_is_cached():
    client, session = _client(
        {
            "/v1/auth": _auth_ok(),
            "/v1/kernel/tx": _FakeResponse(200, {"userOpHash": "op1"}),
        }
    )
    for _ in range(2):
        client.send_tokens(
            sender_tg_id="111",
            recipient_wallet=RECIPIENT,
            amount="1",
            token_address=TOKEN,
            chain_id="eip155:137",
        )

    assert [c["path"] for c in session.calls] == ["/v1/auth", "/v1/kernel/tx", "/v1/kernel/tx"]


def test_blank_tx_hash_is_treated_as_missing():
    client, _ = _client(
        {
            "/v1/auth": _auth_ok(),
            "/v1/kernel/tx": _FakeResponse(200, {"txHash": "", "userOpHash": "op123"}),
        }
    )
    result = client.swap_tokens(user_tg_id="111", to=RECIPIENT, value="0x00", data="0xdead", chain_id="eip155:137")
    assert result.tx_hash is None
    assert result.user_op_hash == "op123"


def test_swap_is_delegatecall():
    client, session = _client(
        {
            "/v1/auth": _auth_ok(),
            "/v1/kernel/tx": _FakeResponse(200, {"txHash": "0xabc"}),
        }
    )
    client.swap_tokens(user_tg_id="111", to=RECIPIENT, value="0x00", data="0xdead", chain_id="eip155:59144")

    body = session.calls[-1]["json"]
    assert body["delegatecall"] == 1
    assert body["chain"] == "linea"
    assert body["data"] == ["0xdead"]


def test_lock_tokens_approves_then_batches():
    client, session = _client(
        {
            "/v1/auth": _auth_ok(),
            "/v1/kernel/tx": _FakeResponse(200, {"txHash": "0xabc"}),
        }
    )
    client.lock_tokens(
        sender_tg_id="111",
        recipients=[{"recipientAddress": RECIPIENT, "amount": "3"}],
        token_address=TOKEN,
        chain_id="eip155:137",
        use_vesting=False,
    )

    body = session.calls[-1]["json"]
    assert len(body["to"]) == 2
    assert body["to"][0] == TOKEN
    assert body["data"][0].startswith("0x095ea7b3")


@pytest.mark.parametrize("status", [400, 470, 503, 500])
def test_http_error_carries_status(status):
    client, _ = _client(
        {
            "/v1/auth": _auth_ok(),
            "/v1/kernel/tx": _FakeResponse(status, {"error": "nope"}),
        }
    )
    with pytest.raises(WalletGatewayError) as exc:
        client.send_tokens(
            sender_tg_id="111",
            recipient_wallet=RECIPIENT,
            amount="1",
            token_address=TOKEN,
            chain_id="eip155:137",
        )
    assert exc.value.response_status == status


def test_network_error_has_no_status():
    client, _ = _client({"/v1/kernel/txStatus": requests.ConnectionError("reset")})

    with pytest.raises(WalletGatewayError) as exc:
        client.get_status("op1")
    assert exc.value.response_status is None
    assert exc.value.submit_outcome() is None

    series = metrics.snapshot()["wallet_gateway_calls_total"]
    assert series[(("action", "tx_status"), ("result", "network_error"))] == 1


def test_get_status_does_not_authenticate():
    client, session = _client({"/v1/kernel/txStatus": _FakeResponse(200, {"txHash": "0xabc", "userOpHash": "op1"})})

    result = client.get_status("op1")

    assert result.tx_hash == "0xabc"
    assert session.calls == [{"path": "/v1/kernel/txStatus", "json": {"userOpHash": "op1"}, "headers": {"Content-Type": "application/json"}}]


def test_resolve_address():
    client, session = _client({"/v1/resolver": _FakeResponse(200, {"users": [{"accountAddress": RECIPIENT}]})})

    assert client.resolve_address("222") == RECIPIENT
    assert session.calls[0]["json"] == {"userIds": "grindery:222"}


def test_resolve_address_without_users_fails():
    client, _ = _client({"/v1/resolver": _FakeResponse(200, {"users": []})})
    with pytest.raises(WalletGatewayError):
        client.resolve_address("222")


def test_unsupported_chain_is_permanent():
    with pytest.raises(WalletGatewayError) as exc:
        chain_name("eip155:1")
    assert exc.value.response_status == 400
    assert chain_name("linea") == "linea"
