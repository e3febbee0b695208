"""Off-chain liquidation engine for isolated-collateral lending banks."""

__version__ = "0.1.0"
