"""Swap aggregators."""
from .paraswap import ParaswapAggregator

__all__ = ["ParaswapAggregator"]
