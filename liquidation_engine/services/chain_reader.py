"""Chain Reader — builds immutable per-block snapshots of a market."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable

from ..chains.evm.abi import normalize_address
from ..config import EngineConfig
from ..errors import ChainUnavailable, EngineError
from ..interfaces.chain import ChainClient
from ..interfaces.lending import LendingMarket
from ..models import ChainSnapshot, Position, PriceQuote

logger = logging.getLogger(__name__)


class ChainReader:
    """Reads bank positions and oracle prices pinned to a single block."""

    def __init__(
        self,
        chain_client: ChainClient,
        market: LendingMarket,
        config: EngineConfig,
        extra_tokens: tuple[str, ...] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = chain_client
        self._extra_tokens = tuple(normalize_address(t) for t in extra_tokens if t)
        self._market = market
        self._config = config
        self._clock = clock
        self._last_block: int | None = None

    @property
    def market(self) -> LendingMarket:
        return self._market

    async def latest_block(self) -> int:
        return await self._client.block_number()

    async def snapshot(self, block: int | None = None) -> ChainSnapshot:
        """Read the full open-position set and the prices it references.

        Raises:
            ChainUnavailable: when the chain cannot be reached.
        """
        if block is None:
            block = await self.latest_block()
        header = await self._client.get_block(block)
        block_timestamp = int(header.get("timestamp", "0x0"), 16) if header else 0

        positions = await self._market.fetch_positions(block)
        collateral_assets = {p.id: self._market.collateral_asset(p) for p in positions}

        tokens: set[str] = set(self._extra_tokens)
        for p in positions:
            tokens.update((collateral_assets[p.id], p.underlying_token, p.debt_token))
        underlying_tokens = {p.underlying_token for p in positions}

        prices, decimals = await self._read_tokens(sorted(tokens), block, block_timestamp)
        thresholds = dict(
            zip(
                sorted(underlying_tokens),
                await asyncio.gather(
                    *(
                        self._market.get_liquidation_threshold(t, block)
                        for t in sorted(underlying_tokens)
                    )
                ),
            )
        )

        priced: dict[int, Position] = {}
        for p in positions:
            needed = (collateral_assets[p.id], p.underlying_token, p.debt_token)
            missing = [t for t in needed if t not in prices or t not in decimals]
            if missing:
                logger.warning(
                    "%s: position %d skipped, no price for %s",
                    self._market.market_name, p.id, ", ".join(missing),
                )
                continue
            priced[p.id] = p

        age = self._clock() - block_timestamp
        stale = age > self._config.stale_after_seconds
        if stale:
            logger.warning(
                "%s: snapshot at block %d is stale (%.0fs old)",
                self._market.market_name, block, age,
            )

        return ChainSnapshot(
            market=self._market.market_name,
            block_number=block,
            block_timestamp=block_timestamp,
            positions=priced,
            prices=prices,
            decimals=decimals,
            liquidation_thresholds=thresholds,
            collateral_assets={pid: collateral_assets[pid] for pid in priced},
            stale=stale,
        )

    async def _read_tokens(
        self, tokens: list[str], block: int, timestamp: int
    ) -> tuple[dict[str, PriceQuote], dict[str, int]]:
        async def read(token: str) -> tuple[str, PriceQuote | None, int | None]:
            try:
                price = await self._market.get_price(token, block)
                decimals = await self._market.get_decimals(token)
            except ChainUnavailable:
                raise
            except EngineError as e:
                logger.warning("Could not read price of %s: %s", token, e)
                return token, None, None
            quote = PriceQuote(
                token=token,
                price_usd=price,
                timestamp=timestamp,
                source=self._market.oracle_address,
            )
            return token, quote, decimals

        results = await asyncio.gather(*(read(t) for t in tokens))
        prices = {t: q for t, q, _ in results if q is not None}
        decimals = {t: d for t, _, d in results if d is not None}
        return prices, decimals

    async def watch(self, interval: float | None = None) -> AsyncIterator[ChainSnapshot]:
        """Yield a snapshot for every new block, polling the block height.

        Chain outages and failed reads are logged and polling continues.
        """
        interval = self._config.poll_interval_seconds if interval is None else interval
        while True:
            snapshot = None
            try:
                block = await self.latest_block()
                if self._last_block is None or block > self._last_block:
                    snapshot = await self.snapshot(block)
                    self._last_block = block
            except ChainUnavailable as e:
                logger.warning("%s: chain unavailable: %s", self._market.market_name, e)
            except EngineError as e:
                logger.error("%s: snapshot failed: %s", self._market.market_name, e)
            if snapshot is not None:
                yield snapshot
            await asyncio.sleep(interval)
