"""Per-signer transaction sender — nonce ordering, gas pricing, signing."""
from __future__ import annotations

import asyncio
import logging

from eth_account.signers.local import LocalAccount
from eth_utils import to_hex

from ..chains.evm.abi import normalize_address
from ..config import SignerConfig
from ..errors import InsufficientFunds, RpcError
from ..interfaces.chain import ChainClient

logger = logging.getLogger(__name__)

GWEI = 10**9


class TransactionSender:
    """Serializes every broadcast of one signer on one chain.

    Markets sharing a chain share one sender, so nonces are handed out in
    strict order even while planning runs in parallel.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        account: LocalAccount,
        config: SignerConfig,
        chain_id: int,
    ) -> None:
        self._client = chain_client
        self._account = account
        self._config = config
        self._chain_id = chain_id
        self._lock = asyncio.Lock()
        self._next_nonce: int | None = None
        self._halted: str | None = None
        self._max_gas_price = int(config.max_gas_price_gwei * GWEI)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def halted(self) -> bool:
        return self._halted is not None

    @property
    def halt_reason(self) -> str | None:
        return self._halted

    def resume(self) -> None:
        """Clear a halt once the operator has funded the signer."""
        if self._halted:
            logger.info("Signer %s resumed", self.address)
        self._halted = None

    # ------------------------------------------------------------------
    # Gas pricing
    # ------------------------------------------------------------------

    async def initial_gas_price(self) -> int:
        network = await self._client.gas_price()
        return min(int(network * self._config.gas_price_multiplier), self._max_gas_price)

    async def bumped_gas_price(self, previous: int) -> int | None:
        """Replacement price, or None when the cap leaves no room to bump."""
        bumped = previous * (100 + self._config.bump_percent) // 100
        network = int(await self._client.gas_price() * self._config.gas_price_multiplier)
        price = min(max(bumped, network), self._max_gas_price)
        return price if price > previous else None

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    async def _reserve_nonce(self) -> int:
        on_chain = await self._client.get_transaction_count(self.address, "pending")
        if self._next_nonce is None or on_chain > self._next_nonce:
            return on_chain
        return self._next_nonce

    async def send(
        self,
        to: str,
        data: str,
        gas: int,
        gas_price: int,
        nonce: int | None = None,
    ) -> tuple[str, int]:
        """Sign and broadcast a transaction; returns ``(tx_hash, nonce)``.

        Passing ``nonce`` replaces an earlier transaction with that nonce.

        Raises:
            InsufficientFunds: the signer cannot pay; the sender halts.
            RpcError: any other node rejection.
        """
        if self._halted:
            raise InsufficientFunds(self.address, self._halted)

        async with self._lock:
            replacing = nonce is not None
            if nonce is None:
                nonce = await self._reserve_nonce()

            tx = {
                "to": normalize_address(to),
                "value": 0,
                "data": data,
                "gas": gas,
                "gasPrice": gas_price,
                "nonce": nonce,
                "chainId": self._chain_id,
            }
            signed = self._account.sign_transaction(tx)

            try:
                tx_hash = await self._client.send_raw_transaction(
                    to_hex(signed.raw_transaction)
                )
            except RpcError as e:
                message = str(e).lower()
                if "insufficient funds" in message:
                    self._halted = str(e)
                    logger.error("Signer %s halted: %s", self.address, e)
                    raise InsufficientFunds(self.address, str(e)) from e
                if "already known" in message:
                    tx_hash = to_hex(signed.hash)
                else:
                    if "nonce too low" in message:
                        self._next_nonce = None
                    raise

            if not replacing:
                self._next_nonce = nonce + 1

        logger.info(
            "Sent tx %s (nonce %d, gas price %.2f gwei)", tx_hash, nonce, gas_price / GWEI
        )
        return tx_hash, nonce
