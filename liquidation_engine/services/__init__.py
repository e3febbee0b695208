"""Service modules"""
from .chain_reader import ChainReader
from .engine import CycleResult, LiquidationEngine, MarketRuntime
from .executor import ExecutionCoordinator
from .planner import LiquidationPlanner
from .risk import assess, evaluate
from .sender import TransactionSender
from .settlement import SettlementReporter

__all__ = [
    "ChainReader",
    "CycleResult",
    "ExecutionCoordinator",
    "LiquidationEngine",
    "LiquidationPlanner",
    "MarketRuntime",
    "SettlementReporter",
    "TransactionSender",
    "assess",
    "evaluate",
]
