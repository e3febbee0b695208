"""Engine orchestration — wires the pipeline for every configured market."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from eth_account import Account

from ..aggregators import ParaswapAggregator
from ..chains.evm import EvmClient
from ..config import AppConfig, MarketConfig
from ..errors import EngineError, InsufficientFunds, OwnershipRejected
from ..interfaces.chain import ChainClient
from ..interfaces.notifier import Notifier
from ..interfaces.swap_aggregator import SwapAggregator
from ..models import ChainSnapshot, LiquidationPlan, RiskSnapshot, to_usd
from ..notifications import EmailNotifier, TelegramNotifier
from ..protocols.blueberry import BlueberryMarket
from ..storage import Ledger
from .chain_reader import ChainReader
from .executor import ExecutionCoordinator
from .planner import LiquidationPlanner
from .risk import evaluate
from .sender import TransactionSender
from .settlement import SettlementReporter

logger = logging.getLogger(__name__)


@dataclass
class MarketRuntime:
    """Pipeline components of one market."""

    name: str
    chain: str
    client: ChainClient
    market: BlueberryMarket
    reader: ChainReader
    planner: LiquidationPlanner
    reporter: SettlementReporter
    coordinator: ExecutionCoordinator | None = None


@dataclass
class CycleResult:
    market: str
    block_number: int
    at_risk: list[RiskSnapshot] = field(default_factory=list)
    plans: list[LiquidationPlan] = field(default_factory=list)
    submitted: int = 0
    settled: int = 0
    stale: bool = False

    @property
    def liquidatable(self) -> list[RiskSnapshot]:
        return [r for r in self.at_risk if r.liquidatable]


class LiquidationEngine:
    """Runs read → evaluate → plan → execute → settle for each market."""

    def __init__(
        self,
        config: AppConfig,
        ledger: Ledger | None = None,
        chain_clients: dict[str, ChainClient] | None = None,
        aggregators: dict[str, SwapAggregator] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._clock = clock
        self._ledger = ledger if ledger is not None else Ledger(config.treasury.ledger_path)

        # Build chain clients
        self._clients: dict[str, ChainClient] = dict(chain_clients or {})
        for name, chain_cfg in config.chains.items():
            self._clients.setdefault(name, EvmClient(chain_cfg))

        # One sender per chain so every market on a chain shares the nonce queue
        self._account = (
            Account.from_key(config.signer.private_key) if config.signer.private_key else None
        )
        self._senders: dict[str, TransactionSender] = {}
        if self._account is not None:
            for name, client in self._clients.items():
                self._senders[name] = TransactionSender(
                    client, self._account, config.signer, config.chains[name].chain_id
                )

        self._aggregators: dict[str, SwapAggregator] = dict(aggregators or {})
        for name, chain_cfg in config.chains.items():
            self._aggregators.setdefault(
                name, ParaswapAggregator(config.aggregator, chain_cfg.chain_id)
            )

        # Build per-market pipelines
        self._markets: dict[str, MarketRuntime] = {}
        for name, market_cfg in config.markets.items():
            self._markets[name] = self._build_market(name, market_cfg)

        # Build notifiers
        self._notifiers: list[Notifier] = []
        if config.notifications.telegram.enabled:
            self._notifiers.append(TelegramNotifier(config.notifications.telegram))
        if config.notifications.email.enabled:
            self._notifiers.append(EmailNotifier(config.notifications.email))

    def _build_market(self, name: str, market_cfg: MarketConfig) -> MarketRuntime:
        chain_cfg = self._config.chains[market_cfg.chain]
        client = self._clients[market_cfg.chain]
        market = BlueberryMarket(client, name, market_cfg)
        reader = ChainReader(
            client, market, self._config.engine,
            extra_tokens=(chain_cfg.native_token, *self._config.treasury.sweep_tokens),
            clock=self._clock,
        )
        planner = LiquidationPlanner(
            self._aggregators[market_cfg.chain],
            self._config.engine,
            market_cfg,
            self._config.aggregator,
            self._config.signer,
            market.liquidator_address,
            native_token=chain_cfg.native_token,
        )

        coordinator = None
        sender = self._senders.get(market_cfg.chain)
        if sender is not None:
            coordinator = ExecutionCoordinator(
                client, market, sender, self._ledger,
                self._config.engine, self._config.signer, clock=self._clock,
            )
            coordinator.restore(self._ledger.pending_attempts())

        reporter = SettlementReporter(
            market, coordinator, self._ledger, self._config.treasury, clock=self._clock
        )
        return MarketRuntime(
            name=name,
            chain=market_cfg.chain,
            client=client,
            market=market,
            reader=reader,
            planner=planner,
            reporter=reporter,
            coordinator=coordinator,
        )

    @property
    def markets(self) -> dict[str, MarketRuntime]:
        return self._markets

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def signer_address(self) -> str | None:
        return self._account.address if self._account is not None else None

    def _require_signer(self, action: str) -> None:
        if self._account is None:
            raise ValueError(f"signer.private_key is required to {action}")

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _evaluate(self, runtime: MarketRuntime, snapshot: ChainSnapshot) -> list[RiskSnapshot]:
        engine = self._config.engine
        risks = evaluate(
            snapshot,
            safety_margin_bps=engine.safety_margin_bps,
            formula=engine.risk_formula,
            default_threshold_bps=self._config.markets[runtime.name].liquidation_threshold_bps,
        )
        for risk in risks:
            logger.info(
                "%s · position %d · debt $%.2f · collateral $%.2f · underlying $%.2f · "
                "HF %.4f%s",
                runtime.name, risk.position_id,
                to_usd(risk.debt_value_usd), to_usd(risk.collateral_value_usd),
                to_usd(risk.underlying_value_usd), risk.health,
                " · LIQUIDATABLE" if risk.liquidatable else "",
            )
        return risks

    async def _settle(self, runtime: MarketRuntime) -> int:
        settled = 0
        for attempt, receipt in await runtime.coordinator.poll():
            record = runtime.reporter.record(attempt, receipt)
            if record is not None:
                settled += 1
                await self._send_log(
                    f"✅ {runtime.name} · position {record.position_id} liquidated\n"
                    f"tx {record.tx_hash} · block {record.block_number}\n"
                    f"{self._now_str()} UTC"
                )
        return settled

    async def run_cycle(
        self,
        runtime: MarketRuntime,
        snapshot: ChainSnapshot | None = None,
        execute: bool = True,
    ) -> CycleResult:
        """Process one snapshot of one market.

        With ``execute=False`` (or ``engine.dry_run``) nothing is submitted.
        """
        if snapshot is None:
            snapshot = await runtime.reader.snapshot()
        result = CycleResult(
            market=runtime.name, block_number=snapshot.block_number, stale=snapshot.stale
        )
        coordinator = runtime.coordinator
        executing = execute and not self._config.engine.dry_run and coordinator is not None

        if executing:
            result.settled = await self._settle(runtime)

        result.at_risk = self._evaluate(runtime, snapshot)
        if snapshot.stale:
            return result

        if coordinator is not None:
            coordinator.reconcile(result.at_risk)

        candidates = [
            r for r in result.at_risk
            if r.liquidatable
            and (coordinator is None or (
                r.position_id not in coordinator.in_flight()
                and not coordinator.is_cooling_down(r.position_id)
            ))
        ]
        if not candidates:
            return result

        gas_price = await runtime.client.gas_price()
        result.plans = await runtime.planner.plan_many(candidates, snapshot, gas_price)
        for plan in result.plans:
            logger.info(
                "%s · plan for position %d · expected proceeds $%.2f (gas $%.2f)",
                runtime.name, plan.position_id,
                to_usd(plan.expected_proceeds_usd), to_usd(plan.expected_gas_cost_usd),
            )

        if not executing:
            return result

        for plan in result.plans:
            coordinator.accept(plan)
        try:
            attempts = await coordinator.submit_planned(snapshot.block_number)
        except InsufficientFunds as e:
            await self._send_alert(
                f"🚨 {runtime.name}: submissions halted\n\n{e}\n\n{self._now_str()} UTC",
                subject="🚨 Liquidation engine: signer out of funds",
            )
            return result
        result.submitted = len(attempts)
        return result

    async def _maybe_sweep(self, runtime: MarketRuntime, snapshot: ChainSnapshot | None,
                           force: bool = False) -> None:
        try:
            await runtime.reporter.maybe_sweep(snapshot, force=force)
        except OwnershipRejected as e:
            await self._send_alert(
                f"🚨 {runtime.name}: sweeping disabled\n\n{e}\n\n{self._now_str()} UTC",
                subject="🚨 Liquidation engine: liquidator ownership",
            )

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def scan(self) -> list[CycleResult]:
        """One evaluation and planning pass over every market; submits nothing."""
        results = []
        for runtime in self._markets.values():
            try:
                result = await self.run_cycle(runtime, execute=False)
            except EngineError as e:
                logger.error("%s: scan failed: %s", runtime.name, e)
                continue
            logger.info(
                "%s · block %d · %d at risk · %d liquidatable · %d profitable",
                runtime.name, result.block_number, len(result.at_risk),
                len(result.liquidatable), len(result.plans),
            )
            results.append(result)
        return results

    async def _market_loop(self, runtime: MarketRuntime, interval: float | None) -> None:
        logger.info("%s: watching bank %s", runtime.name, runtime.market.bank_address)
        if interval is None:
            interval = self._config.engine.poll_interval_seconds
        while True:
            try:
                async for snapshot in runtime.reader.watch(interval):
                    await self._run_iteration(runtime, snapshot)
            except Exception as e:
                # a market's watcher never takes down the others
                logger.error("Error in %s watcher, restarting: %s", runtime.name, e)
            await asyncio.sleep(interval)

    async def _run_iteration(self, runtime: MarketRuntime, snapshot: ChainSnapshot) -> None:
        try:
            await self.run_cycle(runtime, snapshot)
            if runtime.coordinator is not None and not self._config.engine.dry_run:
                await self._maybe_sweep(runtime, snapshot)
        except EngineError as e:
            logger.error("%s: cycle at block %d failed: %s",
                         runtime.name, snapshot.block_number, e)
        except Exception as e:
            logger.error("Error in %s loop: %s", runtime.name, e)

    async def run_continuous(self, interval_seconds: float | None = None) -> None:
        """Run one polling task per market until cancelled."""
        if not self._config.engine.dry_run:
            self._require_signer("submit liquidations")
        logger.info(
            "Starting liquidation engine for %d market(s)%s",
            len(self._markets), " in dry-run mode" if self._config.engine.dry_run else "",
        )
        await asyncio.gather(
            *(self._market_loop(r, interval_seconds) for r in self._markets.values())
        )

    async def sweep(self) -> None:
        """Sweep every market's liquidator balances now."""
        self._require_signer("sweep")
        for runtime in self._markets.values():
            try:
                await self._maybe_sweep(runtime, None, force=True)
            except EngineError as e:
                logger.error("%s: sweep failed: %s", runtime.name, e)

    async def report(self) -> str:
        """Build the settlement report and send it to the notifiers."""
        sections = [r.reporter.build_report() for r in self._markets.values()]
        report = (
            "📋 Liquidation Report\n"
            "\n"
            + "\n\n".join(sections)
            + f"\n\n{self._now_str()} UTC"
        )
        await self._send_alert(report, subject="📋 Liquidation Report")
        logger.info("Report sent")
        return report
