"""Data models — all frozen (immutable).

USD values are integers in 18-decimal fixed point, the unit the on-chain
oracle reports in. Token amounts are integers in the token's base units.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

WAD = 10**18
BPS = 10_000


def to_usd(value: int) -> float:
    """Convert an 18-decimal USD integer to a float for display only."""
    return value / WAD


@dataclass(frozen=True)
class Position:
    """Read-only mirror of a bank position."""

    id: int
    owner: str
    collateral_token: str
    collateral_id: int
    collateral_amount: int
    underlying_token: str
    underlying_amount: int
    debt_token: str
    debt_amount: int
    debt_share: int = 0
    strategy_id: int = 0
    market: str = ""

    @property
    def is_closed(self) -> bool:
        return (
            self.collateral_amount == 0
            and self.underlying_amount == 0
            and self.debt_amount == 0
        )


@dataclass(frozen=True)
class PriceQuote:
    """Oracle price of a token at a given block."""

    token: str
    price_usd: int
    timestamp: int
    source: str


def _frozen(mapping: Mapping | None = None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ChainSnapshot:
    """Consistent view of a market at one block."""

    market: str
    block_number: int
    block_timestamp: int
    positions: Mapping[int, Position] = field(default_factory=_frozen)
    prices: Mapping[str, PriceQuote] = field(default_factory=_frozen)
    decimals: Mapping[str, int] = field(default_factory=_frozen)
    liquidation_thresholds: Mapping[str, int] = field(default_factory=_frozen)
    # Tokens referenced by the positions, keyed by position id: the asset the
    # collateral is priced in (unwrapped when the collateral is a wrapper).
    collateral_assets: Mapping[int, str] = field(default_factory=_frozen)
    stale: bool = False

    def __post_init__(self) -> None:
        for name in (
            "positions",
            "prices",
            "decimals",
            "liquidation_thresholds",
            "collateral_assets",
        ):
            value = getattr(self, name)
            if not isinstance(value, MappingProxyType):
                object.__setattr__(self, name, _frozen(value))

    def price_of(self, token: str) -> int:
        return self.prices[token].price_usd

    def collateral_asset(self, position: Position) -> str:
        return self.collateral_assets.get(position.id, position.collateral_token)


@dataclass(frozen=True)
class RiskSnapshot:
    """Risk figures of one position, derived from a ChainSnapshot."""

    position_id: int
    collateral_value_usd: int
    underlying_value_usd: int
    debt_value_usd: int
    liquidation_threshold_bps: int
    health_ratio: int
    risk_bps: int
    liquidatable: bool
    estimated_profit_usd: int

    @property
    def health(self) -> float:
        return self.health_ratio / WAD


@dataclass(frozen=True)
class SwapQuote:
    """Aggregator route converting one seized asset into the debt token."""

    sell_token: str
    buy_token: str
    sell_amount: int
    expected_return: int
    call_data: str = "0x"
    to: str = ""
    source: str = ""


@dataclass(frozen=True)
class LiquidationPlan:
    position_id: int
    market: str
    debt_token: str
    repay_amount: int
    swap_route: tuple[SwapQuote, ...]
    expected_proceeds_usd: int
    expected_gas_cost_usd: int
    liquidation_fee_usd: int
    created_at_block: int
    expires_at_block: int

    def is_expired(self, block_number: int) -> bool:
        return block_number > self.expires_at_block


class PositionState(str, Enum):
    IDLE = "idle"
    PLANNED = "planned"
    SUBMITTED = "submitted"


class AttemptStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class ExecutionAttempt:
    position_id: int
    market: str
    tx_hash: str
    nonce: int
    gas_price: int
    status: AttemptStatus = AttemptStatus.PENDING
    submitted_at: float = 0.0
    block_number: int | None = None


@dataclass(frozen=True)
class SettlementRecord:
    """Realized proceeds of one confirmed liquidation."""

    tx_hash: str
    position_id: int
    market: str
    amounts: Mapping[str, int]
    block_number: int
    recorded_at: float

    def __post_init__(self) -> None:
        if not isinstance(self.amounts, MappingProxyType):
            object.__setattr__(self, "amounts", _frozen(self.amounts))


@dataclass(frozen=True)
class SweepRecord:
    """A withdrawal of liquidator balances to the treasury."""

    tx_hash: str
    market: str
    amounts: Mapping[str, int]
    recorded_at: float

    def __post_init__(self) -> None:
        if not isinstance(self.amounts, MappingProxyType):
            object.__setattr__(self, "amounts", _frozen(self.amounts))

    @property
    def tokens(self) -> tuple[str, ...]:
        return tuple(self.amounts)
