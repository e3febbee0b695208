"""Blueberry-style isolated-collateral bank."""
from .adapter import BlueberryMarket

__all__ = ["BlueberryMarket"]
