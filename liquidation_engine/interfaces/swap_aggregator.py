"""Swap aggregator protocol — quote source for seized collateral."""
from typing import Protocol

from ..models import SwapQuote


class SwapAggregator(Protocol):
    """Abstract interface for requesting swap routes."""

    async def quote(
        self,
        sell_token: str,
        buy_token: str,
        amount: int,
        recipient: str,
        slippage_bps: int,
        sell_decimals: int = 18,
        buy_decimals: int = 18,
    ) -> SwapQuote: ...
