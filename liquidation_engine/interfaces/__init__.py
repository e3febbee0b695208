"""Protocol interfaces for the liquidation engine."""
from .chain import ChainClient
from .lending import LendingMarket
from .notifier import Notifier
from .swap_aggregator import SwapAggregator

__all__ = ["ChainClient", "LendingMarket", "Notifier", "SwapAggregator"]
