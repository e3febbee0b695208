"""Error taxonomy.

Transient errors (``retryable = True``) are retried inside the component that
raised them. Permanent errors surface to the operator through the notifiers.
``Unprofitable`` is a filtering outcome rather than a failure.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""

    retryable = False
    permanent = False


class ChainUnavailable(EngineError):
    """Every RPC endpoint failed after the configured retries."""

    retryable = True


class RpcError(EngineError):
    """A node answered a JSON-RPC request with an error object."""

    def __init__(self, message: str, code: int | None = None, data: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class CallReverted(RpcError):
    """``eth_call`` / ``eth_estimateGas`` reverted."""

    def __init__(
        self,
        reason: str,
        code: int | None = None,
        data: str | None = None,
    ) -> None:
        super().__init__(f"execution reverted: {reason}", code=code, data=data)
        self.reason = reason


class QuoteUnavailable(EngineError):
    """The swap aggregator did not return a usable route."""

    retryable = True


class StaleQuote(EngineError):
    """A plan outlived its expiry block before it could be submitted."""

    def __init__(self, position_id: int, expires_at_block: int, block: int) -> None:
        super().__init__(
            f"plan for position {position_id} expired at block {expires_at_block} "
            f"(current block {block})"
        )
        self.position_id = position_id
        self.expires_at_block = expires_at_block
        self.block = block


class Unprofitable(EngineError):
    """Expected net proceeds of a liquidation are not positive."""

    def __init__(self, position_id: int, expected_proceeds_usd: int) -> None:
        super().__init__(
            f"position {position_id} unprofitable "
            f"(expected proceeds {expected_proceeds_usd / 10**18:.4f} USD)"
        )
        self.position_id = position_id
        self.expected_proceeds_usd = expected_proceeds_usd


class TransactionReverted(EngineError):
    """A liquidation reverted, on-chain or during gas estimation."""

    def __init__(self, position_id: int, reason: str, tx_hash: str | None = None) -> None:
        super().__init__(f"liquidation of position {position_id} reverted: {reason}")
        self.position_id = position_id
        self.reason = reason
        self.tx_hash = tx_hash


class OwnershipRejected(EngineError):
    """The signer is not the owner of the liquidator contract."""

    permanent = True


class InsufficientFunds(EngineError):
    """The signer cannot pay for gas; submission halts for that signer."""

    permanent = True

    def __init__(self, signer: str, detail: str = "") -> None:
        super().__init__(f"signer {signer} has insufficient funds: {detail}".rstrip(": "))
        self.signer = signer
