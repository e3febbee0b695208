"""Pure decoding and valuation helpers for bank data — no I/O."""
from __future__ import annotations

from typing import Any, Sequence

from ...chains.evm.abi import (
    TRANSFER_TOPIC,
    address_from_topic,
    address_from_uint,
    normalize_address,
)
from ...models import Position

# getPositionInfo(uint256) returns the Position struct:
# (owner, collToken, underlyingToken, debtToken,
#  underlyingVaultShare, collId, collateralSize, debtShare)
POSITION_INFO_TYPES = (
    "address",
    "address",
    "address",
    "address",
    "uint256",
    "uint256",
    "uint256",
    "uint256",
)

# getBankInfo(address) returns the Bank struct:
# (isListed, index, hardVault, softVault, bToken, totalShare, liqThreshold)
BANK_INFO_TYPES = (
    "bool",
    "uint8",
    "address",
    "address",
    "address",
    "uint256",
    "uint256",
)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def parse_position_info(
    position_id: int,
    info: Sequence[Any],
    debt_amount: int,
    market: str = "",
) -> Position:
    """Build a Position from the decoded ``getPositionInfo`` tuple."""
    (
        owner,
        coll_token,
        underlying_token,
        debt_token,
        underlying_share,
        coll_id,
        collateral_size,
        debt_share,
    ) = info
    return Position(
        id=position_id,
        owner=normalize_address(owner),
        collateral_token=normalize_address(coll_token),
        collateral_id=int(coll_id),
        collateral_amount=int(collateral_size),
        underlying_token=normalize_address(underlying_token),
        underlying_amount=int(underlying_share),
        debt_token=normalize_address(debt_token),
        debt_amount=int(debt_amount),
        debt_share=int(debt_share),
        market=market,
    )


def is_empty_info(info: Sequence[Any]) -> bool:
    """A closed or never-opened position has no collateral, deposit or debt."""
    return int(info[4]) == 0 and int(info[6]) == 0 and int(info[7]) == 0


def collateral_asset(position: Position, wrappers: frozenset[str]) -> str:
    """Token the collateral is priced in.

    Wrapped ERC-20 collateral (WERC20) encodes the wrapped token address in
    ``collId``.
    """
    if position.collateral_token in wrappers and position.collateral_id:
        return address_from_uint(position.collateral_id)
    return position.collateral_token


def token_value(amount: int, price: int, decimals: int) -> int:
    """USD value (18 decimals) of ``amount`` base units at ``price``."""
    return amount * price // 10**decimals


def parse_transfers_to(receipt: dict[str, Any], recipient: str) -> dict[str, int]:
    """Sum ERC-20 Transfer amounts received by ``recipient`` in a receipt."""
    recipient = normalize_address(recipient)
    received: dict[str, int] = {}
    for log in receipt.get("logs", []):
        topics = log.get("topics", [])
        if len(topics) < 3 or topics[0].lower() != TRANSFER_TOPIC:
            continue
        if address_from_topic(topics[2]) != recipient:
            continue
        token = normalize_address(log["address"])
        data = log.get("data") or "0x0"
        amount = int(data, 16) if data != "0x" else 0
        received[token] = received.get(token, 0) + amount
    return received


def parse_bank_threshold(info: Sequence[Any]) -> int | None:
    """Liquidation threshold (bps) of a listed bank; ``None`` when unlisted."""
    is_listed, threshold = info[0], int(info[6])
    if not is_listed or threshold == 0:
        return None
    return threshold
