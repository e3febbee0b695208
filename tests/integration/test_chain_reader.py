"""Integration tests for the chain reader over an in-memory bank."""
from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from fakes import DAI, LIQUIDATOR, USDC, WERC20, WETH, FakeChain, seed_usdc_dai_position
from liquidation_engine.chains.evm.abi import normalize_address
from liquidation_engine.config import EngineConfig, MarketConfig
from liquidation_engine.errors import CallReverted, ChainUnavailable
from liquidation_engine.models import WAD
from liquidation_engine.protocols.blueberry import BlueberryMarket
from liquidation_engine.services import ChainReader

UNPRICED = normalize_address("0x" + "77" * 20)


@pytest.fixture()
def market(fake_chain: FakeChain, sample_market_config: MarketConfig) -> BlueberryMarket:
    return BlueberryMarket(fake_chain, "blueberry", sample_market_config)


@pytest.fixture()
def reader(
    fake_chain: FakeChain, market: BlueberryMarket, sample_engine_config: EngineConfig
) -> ChainReader:
    return ChainReader(
        fake_chain, market, sample_engine_config,
        extra_tokens=(WETH,), clock=lambda: fake_chain.timestamp + 5,
    )


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_reads_positions_and_prices(
        self, fake_chain: FakeChain, reader: ChainReader
    ) -> None:
        pid = seed_usdc_dai_position(fake_chain)

        snapshot = await reader.snapshot()

        assert snapshot.block_number == 100
        assert snapshot.block_timestamp == fake_chain.timestamp
        assert snapshot.stale is False
        position = snapshot.positions[pid]
        assert position.collateral_token == WERC20
        assert position.debt_amount == 5000 * 10**18
        assert position.underlying_amount == 5000 * 10**6
        assert snapshot.collateral_asset(position) == WETH
        assert snapshot.price_of(WETH) == 2000 * WAD
        assert snapshot.decimals[USDC] == 6
        assert snapshot.liquidation_thresholds == {USDC: 8500}
        assert set(snapshot.prices) == {USDC, DAI, WETH}

    @pytest.mark.asyncio
    async def test_pinned_to_requested_block(
        self, fake_chain: FakeChain, reader: ChainReader
    ) -> None:
        seed_usdc_dai_position(fake_chain)
        snapshot = await reader.snapshot(block=95)
        assert snapshot.block_number == 95

    @pytest.mark.asyncio
    async def test_closed_positions_are_omitted(
        self, fake_chain: FakeChain, reader: ChainReader
    ) -> None:
        pid = seed_usdc_dai_position(fake_chain)
        fake_chain.liquidate(pid)

        snapshot = await reader.snapshot()

        assert dict(snapshot.positions) == {}

    @pytest.mark.asyncio
    async def test_position_without_price_skipped(
        self, fake_chain: FakeChain, reader: ChainReader
    ) -> None:
        good = seed_usdc_dai_position(fake_chain)
        bad = fake_chain.open_position(
            collateral_token=WETH,
            collateral_id=0,
            collateral_size=10**18,
            underlying_token=USDC,
            underlying_amount=10**6,
            debt_token=UNPRICED,
            debt_amount=10**18,
        )

        snapshot = await reader.snapshot()

        assert good in snapshot.positions
        assert bad not in snapshot.positions
        assert UNPRICED not in snapshot.prices

    @pytest.mark.asyncio
    async def test_reverting_position_read_skipped(
        self, fake_chain: FakeChain, reader: ChainReader
    ) -> None:
        good = seed_usdc_dai_position(fake_chain)
        bad = seed_usdc_dai_position(fake_chain)
        fake_chain.broken_positions.add(bad)

        snapshot = await reader.snapshot()

        assert list(snapshot.positions) == [good]
        assert snapshot.positions[good].debt_amount == 5000 * 10**18

    @pytest.mark.asyncio
    async def test_threshold_read_from_bank_listing(
        self, fake_chain: FakeChain, reader: ChainReader
    ) -> None:
        seed_usdc_dai_position(fake_chain)
        fake_chain.thresholds[USDC] = 9000

        snapshot = await reader.snapshot()

        assert snapshot.liquidation_thresholds[USDC] == 9000
        assert "getBankInfo(address)" in fake_chain.calls

    @pytest.mark.asyncio
    async def test_configured_threshold_overrides_bank(
        self,
        fake_chain: FakeChain,
        sample_market_config: MarketConfig,
        sample_engine_config: EngineConfig,
    ) -> None:
        seed_usdc_dai_position(fake_chain)
        fake_chain.thresholds[USDC] = 9000
        config = replace(sample_market_config, liquidation_thresholds={USDC: 8000})
        reader = ChainReader(
            fake_chain, BlueberryMarket(fake_chain, "blueberry", config), sample_engine_config,
            clock=lambda: fake_chain.timestamp + 5,
        )

        snapshot = await reader.snapshot()

        assert snapshot.liquidation_thresholds[USDC] == 8000

    @pytest.mark.asyncio
    async def test_extra_tokens_priced_without_positions(
        self, fake_chain: FakeChain, market: BlueberryMarket, sample_engine_config: EngineConfig
    ) -> None:
        fake_chain.set_price(USDC, 1.0, decimals=6)
        fake_chain.set_price(WETH, 2000.0)
        reader = ChainReader(
            fake_chain, market, sample_engine_config,
            extra_tokens=(WETH, USDC), clock=lambda: fake_chain.timestamp + 5,
        )

        snapshot = await reader.snapshot()

        assert dict(snapshot.positions) == {}
        assert set(snapshot.prices) == {USDC, WETH}
        assert snapshot.decimals[USDC] == 6

    @pytest.mark.asyncio
    async def test_threshold_falls_back_to_market_default(
        self, fake_chain: FakeChain, reader: ChainReader
    ) -> None:
        seed_usdc_dai_position(fake_chain)
        del fake_chain.thresholds[USDC]

        snapshot = await reader.snapshot()

        assert snapshot.liquidation_thresholds[USDC] == 8500

    @pytest.mark.asyncio
    async def test_old_block_marked_stale(
        self,
        fake_chain: FakeChain,
        market: BlueberryMarket,
        sample_engine_config: EngineConfig,
    ) -> None:
        seed_usdc_dai_position(fake_chain)
        reader = ChainReader(
            fake_chain, market, sample_engine_config,
            clock=lambda: fake_chain.timestamp + 600,
        )

        snapshot = await reader.snapshot()

        assert snapshot.stale is True

    @pytest.mark.asyncio
    async def test_chain_down_raises(self, fake_chain: FakeChain, reader: ChainReader) -> None:
        fake_chain.down = True
        with pytest.raises(ChainUnavailable):
            await reader.snapshot()

    @pytest.mark.asyncio
    async def test_liquidator_balance(self, fake_chain: FakeChain, market: BlueberryMarket) -> None:
        fake_chain.balances[(USDC, LIQUIDATOR)] = 123
        assert await market.balance_of(USDC, LIQUIDATOR) == 123
        assert await market.balance_of(DAI, LIQUIDATOR) == 0


class TestWatch:
    @pytest.mark.asyncio
    async def test_yields_once_per_new_block(
        self, fake_chain: FakeChain, reader: ChainReader
    ) -> None:
        seed_usdc_dai_position(fake_chain)
        blocks = []

        async for snapshot in reader.watch(0):
            blocks.append(snapshot.block_number)
            if len(blocks) == 2:
                break
            fake_chain.block += 1

        assert blocks == [100, 101]

    @pytest.mark.asyncio
    async def test_failed_snapshot_does_not_stop_polling(
        self, fake_chain: FakeChain, reader: ChainReader
    ) -> None:
        seed_usdc_dai_position(fake_chain)
        good = await reader.snapshot(100)
        reader.snapshot = AsyncMock(side_effect=[CallReverted("BAD_READ"), good])

        async for snapshot in reader.watch(0):
            break

        assert snapshot.block_number == 100
        assert reader.snapshot.await_count == 2
