"""Blueberry bank adapter — reads positions, prices and thresholds."""
from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from ...chains.evm.abi import decode_result, encode_call, normalize_address
from ...config import MarketConfig
from ...errors import CallReverted, ChainUnavailable, EngineError
from ...interfaces.chain import ChainClient
from ...models import Position
from . import parser

logger = logging.getLogger(__name__)

_READ_CONCURRENCY = 16


def encode_liquidate(position_id: int) -> str:
    return encode_call("liquidate(uint256)", [position_id])


def encode_withdraw(tokens: Sequence[str]) -> str:
    return encode_call("withdraw(address[])", [[normalize_address(t) for t in tokens]])


class BlueberryMarket:
    """Read access to one bank deployment and its oracle and liquidator."""

    def __init__(self, chain_client: ChainClient, name: str, config: MarketConfig) -> None:
        self._client = chain_client
        self._name = name
        self._config = config
        self._bank = normalize_address(config.contracts["bank"])
        self._oracle = normalize_address(config.contracts["oracle"])
        self._liquidator = normalize_address(config.contracts["liquidator"])
        self._wrappers = frozenset(normalize_address(a) for a in config.wrapped_collateral)
        self._decimals: dict[str, int] = {
            normalize_address(k): v for k, v in config.token_decimals.items()
        }
        self._thresholds: dict[str, int] = {
            normalize_address(k): v for k, v in config.liquidation_thresholds.items()
        }
        self._semaphore = asyncio.Semaphore(_READ_CONCURRENCY)

    @property
    def market_name(self) -> str:
        return self._name

    @property
    def bank_address(self) -> str:
        return self._bank

    @property
    def oracle_address(self) -> str:
        return self._oracle

    @property
    def liquidator_address(self) -> str:
        return self._liquidator

    @property
    def wrappers(self) -> frozenset[str]:
        return self._wrappers

    async def _read(
        self, to: str, signature: str, args: Sequence = (), types: Sequence[str] = ("uint256",),
        block: int | str = "latest",
    ) -> tuple:
        async with self._semaphore:
            data = await self._client.call(to, encode_call(signature, args), block)
        return decode_result(types, data)

    # ------------------------------------------------------------------
    # Bank
    # ------------------------------------------------------------------

    async def next_position_id(self, block: int | str = "latest") -> int:
        (next_id,) = await self._read(self._bank, "getNextPositionId()", block=block)
        return next_id

    async def fetch_position(self, position_id: int, block: int | str = "latest") -> Position | None:
        """Fetch one position; ``None`` when it is closed."""
        info = await self._read(
            self._bank,
            "getPositionInfo(uint256)",
            [position_id],
            parser.POSITION_INFO_TYPES,
            block,
        )
        if parser.is_empty_info(info):
            return None
        (debt,) = await self._read(
            self._bank, "getPositionDebt(uint256)", [position_id], block=block
        )
        return parser.parse_position_info(position_id, info, debt, self._name)

    async def _fetch_isolated(self, position_id: int, block: int) -> Position | None:
        try:
            return await self.fetch_position(position_id, block)
        except ChainUnavailable:
            raise
        except EngineError as e:
            logger.warning("%s: position %d skipped, read failed: %s", self._name, position_id, e)
            return None

    async def fetch_positions(self, block: int) -> list[Position]:
        """Fetch every open position at ``block``. Position ids start at 1.

        A position whose reads revert is logged and left out.
        """
        next_id = await self.next_position_id(block)
        results = await asyncio.gather(
            *(self._fetch_isolated(pid, block) for pid in range(1, next_id))
        )
        positions = [p for p in results if p is not None]
        logger.debug(
            "%s: %d open positions of %d at block %d",
            self._name, len(positions), max(next_id - 1, 0), block,
        )
        return positions

    async def is_liquidatable(self, position_id: int, block: int | str = "latest") -> bool:
        (flag,) = await self._read(
            self._bank, "isLiquidatable(uint256)", [position_id], ("bool",), block
        )
        return flag

    # ------------------------------------------------------------------
    # Oracle and tokens
    # ------------------------------------------------------------------

    def collateral_asset(self, position: Position) -> str:
        return parser.collateral_asset(position, self._wrappers)

    async def get_price(self, token: str, block: int | str = "latest") -> int:
        (price,) = await self._read(self._oracle, "getPrice(address)", [token], block=block)
        return price

    async def get_decimals(self, token: str) -> int:
        token = normalize_address(token)
        if token not in self._decimals:
            (decimals,) = await self._read(token, "decimals()", types=("uint8",))
            self._decimals[token] = int(decimals)
        return self._decimals[token]

    async def get_liquidation_threshold(self, token: str, block: int | str = "latest") -> int:
        """Liquidation threshold in bps from the bank's token listing.

        Config overrides the bank; unlisted tokens and reverted reads use the
        market default.
        """
        token = normalize_address(token)
        if token in self._thresholds:
            return self._thresholds[token]
        default = self._config.liquidation_threshold_bps
        try:
            info = await self._read(
                self._bank, "getBankInfo(address)", [token], parser.BANK_INFO_TYPES, block
            )
        except CallReverted as e:
            logger.warning(
                "getBankInfo(%s) reverted (%s); using default %d bps", token, e.reason, default
            )
            return default
        threshold = parser.parse_bank_threshold(info)
        if threshold is None:
            logger.warning("%s is not listed on the bank; using default %d bps", token, default)
            return default
        return threshold

    async def balance_of(self, token: str, holder: str, block: int | str = "latest") -> int:
        (balance,) = await self._read(
            normalize_address(token), "balanceOf(address)", [normalize_address(holder)],
            block=block,
        )
        return balance
