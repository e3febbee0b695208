"""Liquidation Planner — turns at-risk positions into priced plans."""
from __future__ import annotations

import asyncio
import logging

from ..chains.evm.abi import normalize_address
from ..config import AggregatorConfig, EngineConfig, MarketConfig, SignerConfig
from ..errors import EngineError, Unprofitable
from ..interfaces.swap_aggregator import SwapAggregator
from ..models import (
    BPS,
    WAD,
    ChainSnapshot,
    LiquidationPlan,
    RiskSnapshot,
    SwapQuote,
    to_usd,
)
from ..protocols.blueberry.parser import token_value

logger = logging.getLogger(__name__)


class LiquidationPlanner:
    """Prices a full-close liquidation for each flagged position."""

    def __init__(
        self,
        aggregator: SwapAggregator,
        engine_config: EngineConfig,
        market_config: MarketConfig,
        aggregator_config: AggregatorConfig,
        signer_config: SignerConfig,
        liquidator_address: str,
        native_token: str = "",
    ) -> None:
        self._aggregator = aggregator
        self._engine = engine_config
        self._market = market_config
        self._slippage_bps = aggregator_config.slippage_bps
        self._gas_limit = signer_config.gas_limit
        self._liquidator = liquidator_address
        self._native_token = normalize_address(native_token) if native_token else ""
        self._min_profit = int(engine_config.min_profit_usd * WAD)
        self._semaphore = asyncio.Semaphore(max(1, engine_config.max_concurrent_plans))

    def gas_cost_usd(self, snapshot: ChainSnapshot, gas_price: int) -> int:
        """Gas cost of a liquidation in USD, priced in the native token."""
        quote = snapshot.prices.get(self._native_token)
        if quote is None:
            return 0
        return self._gas_limit * gas_price * quote.price_usd // WAD

    async def plan(
        self, risk: RiskSnapshot, snapshot: ChainSnapshot, gas_price: int
    ) -> LiquidationPlan:
        """Build a plan for one position.

        Raises:
            Unprofitable: expected proceeds do not exceed the minimum profit.
            QuoteUnavailable: the aggregator could not route a seized asset.
        """
        position = snapshot.positions[risk.position_id]
        debt_token = position.debt_token
        debt_decimals = snapshot.decimals[debt_token]

        seized = [
            (snapshot.collateral_asset(position), position.collateral_amount),
            (position.underlying_token, position.underlying_amount),
        ]
        route: list[SwapQuote] = []
        for token, amount in seized:
            if amount == 0:
                continue
            if token == debt_token:
                route.append(SwapQuote(token, debt_token, amount, amount, source="identity"))
                continue
            route.append(
                await self._aggregator.quote(
                    sell_token=token,
                    buy_token=debt_token,
                    amount=amount,
                    recipient=self._liquidator,
                    slippage_bps=self._slippage_bps,
                    sell_decimals=snapshot.decimals[token],
                    buy_decimals=debt_decimals,
                )
            )

        debt_price = snapshot.price_of(debt_token)
        swap_return = sum(q.expected_return for q in route)
        proceeds_usd = token_value(swap_return, debt_price, debt_decimals)
        repay_usd = token_value(position.debt_amount, debt_price, debt_decimals)
        gas_usd = self.gas_cost_usd(snapshot, gas_price)
        seized_usd = risk.collateral_value_usd + risk.underlying_value_usd
        fee_usd = seized_usd * self._market.liquidation_fee_bps // BPS

        net = proceeds_usd - repay_usd - gas_usd - fee_usd
        if net <= self._min_profit:
            raise Unprofitable(position.id, net)

        return LiquidationPlan(
            position_id=position.id,
            market=snapshot.market,
            debt_token=debt_token,
            repay_amount=position.debt_amount,
            swap_route=tuple(route),
            expected_proceeds_usd=net,
            expected_gas_cost_usd=gas_usd,
            liquidation_fee_usd=fee_usd,
            created_at_block=snapshot.block_number,
            expires_at_block=snapshot.block_number + self._engine.plan_ttl_blocks,
        )

    async def _plan_bounded(
        self, risk: RiskSnapshot, snapshot: ChainSnapshot, gas_price: int
    ) -> LiquidationPlan | None:
        async with self._semaphore:
            try:
                return await self.plan(risk, snapshot, gas_price)
            except Unprofitable as e:
                logger.info(
                    "Skipping position %d: expected proceeds $%.2f",
                    e.position_id, to_usd(e.expected_proceeds_usd),
                )
            except EngineError as e:
                logger.warning("Could not plan position %d: %s", risk.position_id, e)
            return None

    async def plan_many(
        self, risks: list[RiskSnapshot], snapshot: ChainSnapshot, gas_price: int
    ) -> list[LiquidationPlan]:
        """Plan liquidatable positions in parallel, best expected proceeds first."""
        candidates = [r for r in risks if r.liquidatable]
        results = await asyncio.gather(
            *(self._plan_bounded(r, snapshot, gas_price) for r in candidates)
        )
        plans = [p for p in results if p is not None]
        plans.sort(key=lambda p: (-p.expected_proceeds_usd, p.position_id))
        return plans
