"""EVM JSON-RPC client with endpoint fallback and exponential backoff."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ...config import ChainConfig
from ...errors import CallReverted, ChainUnavailable, RpcError
from .abi import decode_revert_reason

logger = logging.getLogger(__name__)

BlockId = int | str


class _EndpointsExhausted(Exception):
    """Every endpoint failed once; retried with backoff."""


def _block_param(block: BlockId) -> str:
    return hex(block) if isinstance(block, int) else block


def _is_revert(error: dict[str, Any]) -> bool:
    message = str(error.get("message", "")).lower()
    return error.get("code") == 3 or "revert" in message


class EvmClient:
    """JSON-RPC client for one EVM chain.

    A request walks the endpoint list once (sticking to the last healthy
    endpoint) and the whole walk is retried with exponential backoff. Node
    errors are not retried: reverts raise ``CallReverted`` and other error
    objects raise ``RpcError``.
    """

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.chain_id = config.chain_id
        self.max_retries = max(1, config.max_retries)
        self.backoff_base = config.backoff_base_seconds
        self.backoff_max = config.backoff_max_seconds
        self.current_rpc_index = 0
        self._request_id = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make an RPC call, raising ``ChainUnavailable`` once retries run out."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
                retry=retry_if_exception_type(_EndpointsExhausted),
                reraise=True,
            ):
                with attempt:
                    return await self._call_endpoints(method, params)
        except _EndpointsExhausted as e:
            raise ChainUnavailable(f"{method}: {e}") from e

    async def _call_endpoints(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed on %s: %s", rpc_url, method, e)
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            if "error" in result:
                error = result["error"] or {}
                code = error.get("code")
                data = error.get("data")
                if isinstance(data, dict):
                    data = data.get("data")
                if _is_revert(error):
                    reason = decode_revert_reason(data) or str(error.get("message", ""))
                    raise CallReverted(reason, code=code, data=data)
                raise RpcError(str(error.get("message", error)), code=code, data=data)

            return result.get("result")

        raise _EndpointsExhausted(f"All RPC endpoints failed. Last error: {last_error}")

    # ------------------------------------------------------------------
    # eth_* wrappers
    # ------------------------------------------------------------------

    async def block_number(self) -> int:
        return int(await self.rpc_call("eth_blockNumber", []), 16)

    async def get_block(self, block: BlockId = "latest") -> dict[str, Any]:
        return await self.rpc_call("eth_getBlockByNumber", [_block_param(block), False]) or {}

    async def call(
        self,
        to: str,
        data: str,
        block: BlockId = "latest",
        from_address: str | None = None,
    ) -> str:
        tx: dict[str, Any] = {"to": to, "data": data}
        if from_address:
            tx["from"] = from_address
        return await self.rpc_call("eth_call", [tx, _block_param(block)])

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return int(await self.rpc_call("eth_estimateGas", [tx]), 16)

    async def gas_price(self) -> int:
        return int(await self.rpc_call("eth_gasPrice", []), 16)

    async def get_transaction_count(self, address: str, block: BlockId = "pending") -> int:
        return int(
            await self.rpc_call("eth_getTransactionCount", [address, _block_param(block)]),
            16,
        )

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.rpc_call("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def get_chain_id(self) -> int:
        return int(await self.rpc_call("eth_chainId", []), 16)
