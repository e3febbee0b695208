"""Chain client protocol — EVM JSON-RPC abstraction."""
from typing import Any, Protocol


class ChainClient(Protocol):
    """Abstract interface for EVM RPC interactions."""

    chain_id: int

    async def block_number(self) -> int: ...

    async def get_block(self, block: int | str = "latest") -> dict[str, Any]: ...

    async def call(
        self,
        to: str,
        data: str,
        block: int | str = "latest",
        from_address: str | None = None,
    ) -> str: ...

    async def estimate_gas(self, tx: dict[str, Any]) -> int: ...

    async def gas_price(self) -> int: ...

    async def get_transaction_count(self, address: str, block: int | str = "pending") -> int: ...

    async def send_raw_transaction(self, raw_tx: str) -> str: ...

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None: ...
