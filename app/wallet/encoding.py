# app/wallet/encoding.py
from __future__ import annotations

from decimal import Decimal, ROUND_DOWN
from typing import Any

from eth_abi import encode
from web3 import Web3

from settings import settings

PLAN_TUPLE = "(address,uint256,uint256,uint256,uint256)[]"

# Hedgey plan kinds
MINT_TYPE_VESTING = 4
MINT_TYPE_INVESTOR_LOCKUP = 5
PERIOD_LINEAR = 1


def _selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


def _hex(selector: bytes, args: bytes) -> str:
    return "0x" + (selector + args).hex()


def to_wei(amount: Any, decimals: int | None = None) -> int:
    """
    Scale a human token amount ("12.5") to base units. Extra precision is truncated.
    """
    decimals = settings.TOKEN_DECIMALS if decimals is None else decimals
    try:
        scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    except Exception as e:
        raise ValueError(f"Invalid token amount: {amount!r}") from e
    if scaled < 0:
        raise ValueError(f"Negative token amount: {amount!r}")
    return int(scaled.quantize(Decimal(1), rounding=ROUND_DOWN))


def erc20_transfer_data(recipient: str, amount: Any, decimals: int | None = None) -> str:
    return _hex(
        _selector("transfer(address,uint256)"),
        encode(["address", "uint256"], [Web3.to_checksum_address(recipient), to_wei(amount, decimals)]),
    )


def erc20_approve_data(spender: str, amount_wei: int) -> str:
    return _hex(
        _selector("approve(address,uint256)"),
        encode(["address", "uint256"], [Web3.to_checksum_address(spender), int(amount_wei)]),
    )


def hedgey_plans(
    recipients: list[dict[str, Any]],
    *,
    start_ts: int | None = None,
    lock_term_s: int | None = None,
    decimals: int | None = None,
) -> tuple[int, list[tuple[str, int, int, int, int]]]:
    """
    Build ``(total_wei, plans)`` for the Hedgey batch planner.

    Each plan is ``(recipient, amount_wei, start, cliff, rate)``. There is no
    cliff, and the rate is the per-second unlock, rounded up.
    """
    start = int(settings.VESTING_START_TS if start_ts is None else start_ts)
    term = int(settings.TOKEN_LOCK_TERM_S if lock_term_s is None else lock_term_s)

    total = 0
    plans = []
    for r in recipients:
        amount_wei = to_wei(r["amount"], decimals)
        total += amount_wei
        rate = -(-amount_wei // term)
        plans.append((Web3.to_checksum_address(r["recipientAddress"]), amount_wei, start, start, rate))
    return total, plans


def hedgey_batch_data(
    *,
    use_vesting: bool,
    token_address: str,
    total_wei: int,
    plans: list[tuple[str, int, int, int, int]],
) -> str:
    token = Web3.to_checksum_address(token_address)

    if use_vesting:
        return _hex(
            _selector(
                "batchVestingPlans(address,address,uint256,(address,uint256,uint256,uint256,uint256)[],uint256,address,bool,uint8)"
            ),
            encode(
                ["address", "address", "uint256", PLAN_TUPLE, "uint256", "address", "bool", "uint8"],
                [
                    Web3.to_checksum_address(settings.HEDGEY_VESTING_LOCKER),
                    token,
                    total_wei,
                    plans,
                    PERIOD_LINEAR,
                    Web3.to_checksum_address(settings.VESTING_ADMIN_ADDRESS),
                    True,
                    MINT_TYPE_VESTING,
                ],
            ),
        )

    return _hex(
        _selector(
            "batchLockingPlans(address,address,uint256,(address,uint256,uint256,uint256,uint256)[],uint256,uint8)"
        ),
        encode(
            ["address", "address", "uint256", PLAN_TUPLE, "uint256", "uint8"],
            [
                Web3.to_checksum_address(settings.HEDGEY_LOCKUP_LOCKER),
                token,
                total_wei,
                plans,
                PERIOD_LINEAR,
                MINT_TYPE_INVESTOR_LOCKUP,
            ],
        ),
    )
