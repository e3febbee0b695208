"""Lending market protocol — read access to bank and oracle state."""
from typing import Protocol

from ..models import Position


class LendingMarket(Protocol):
    """Abstract interface for reading a lending market at a pinned block."""

    @property
    def market_name(self) -> str: ...

    @property
    def bank_address(self) -> str: ...

    @property
    def oracle_address(self) -> str: ...

    @property
    def liquidator_address(self) -> str: ...

    def collateral_asset(self, position: Position) -> str: ...

    async def fetch_positions(self, block: int) -> list[Position]: ...

    async def is_liquidatable(self, position_id: int, block: int | str = "latest") -> bool: ...

    async def get_price(self, token: str, block: int | str = "latest") -> int: ...

    async def get_decimals(self, token: str) -> int: ...

    async def get_liquidation_threshold(self, token: str, block: int | str = "latest") -> int: ...

    async def balance_of(self, token: str, holder: str, block: int | str = "latest") -> int: ...
