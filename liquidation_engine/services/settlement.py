"""Settlement Reporter — realized proceeds, treasury sweeps and summaries."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from ..chains.evm.abi import normalize_address
from ..config import TreasuryConfig
from ..errors import OwnershipRejected
from ..interfaces.lending import LendingMarket
from ..models import (
    WAD,
    AttemptStatus,
    ChainSnapshot,
    ExecutionAttempt,
    SettlementRecord,
    SweepRecord,
    to_usd,
)
from ..protocols.blueberry.parser import parse_transfers_to, token_value
from ..storage import Ledger
from .executor import ExecutionCoordinator

logger = logging.getLogger(__name__)


class SettlementReporter:
    """Books confirmed liquidations of one market and sweeps its liquidator."""

    def __init__(
        self,
        market: LendingMarket,
        coordinator: ExecutionCoordinator | None,
        ledger: Ledger,
        config: TreasuryConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._market = market
        self._coordinator = coordinator
        self._ledger = ledger
        self._config = config
        self._clock = clock
        self._sweep_tokens = tuple(normalize_address(t) for t in config.sweep_tokens)
        self._threshold = int(config.sweep_threshold_usd * WAD)
        self._sweep_disabled = False
        self._started_at = clock()

    @property
    def sweep_disabled(self) -> bool:
        return self._sweep_disabled

    # ------------------------------------------------------------------
    # Settlements
    # ------------------------------------------------------------------

    def record(
        self, attempt: ExecutionAttempt, receipt: dict[str, Any]
    ) -> SettlementRecord | None:
        """Book a confirmed liquidation. Returns None if already booked."""
        if attempt.status is not AttemptStatus.CONFIRMED:
            return None
        if self._ledger.has_settlement(attempt.tx_hash):
            logger.debug("Settlement %s already recorded", attempt.tx_hash)
            return None

        amounts = parse_transfers_to(receipt, self._market.liquidator_address)
        record = SettlementRecord(
            tx_hash=attempt.tx_hash,
            position_id=attempt.position_id,
            market=attempt.market,
            amounts=amounts,
            block_number=attempt.block_number or 0,
            recorded_at=self._clock(),
        )
        if not self._ledger.record_settlement(record):
            return None
        logger.info(
            "%s: position %d settled, received %s",
            attempt.market, attempt.position_id,
            ", ".join(f"{amt} of {tok}" for tok, amt in amounts.items()) or "nothing",
        )
        return record

    def totals(self) -> dict[str, int]:
        return self._ledger.totals(self._market.market_name)

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def should_sweep(
        self, value_usd: int, now: float | None = None, has_balance: bool = False
    ) -> bool:
        """True when the balance crossed the threshold or the interval elapsed.

        ``has_balance`` marks a non-zero balance whose value could not be
        priced; it still sweeps once the interval elapses.
        """
        if value_usd <= 0 and not has_balance:
            return False
        if value_usd >= self._threshold:
            return True
        now = self._clock() if now is None else now
        last = self._ledger.last_sweep_at(self._market.market_name)
        if last is None:
            last = self._started_at
        return now - last >= self._config.sweep_interval_minutes * 60

    async def balances(self, block: int | str = "latest") -> dict[str, int]:
        """Non-zero liquidator balances of the sweep tokens."""
        tokens = self._sweep_tokens or tuple(sorted(self.totals()))
        balances = {}
        for token in tokens:
            amount = await self._market.balance_of(token, self._market.liquidator_address, block)
            if amount > 0:
                balances[token] = amount
        return balances

    @staticmethod
    def value_of(balances: dict[str, int], snapshot: ChainSnapshot) -> int:
        total = 0
        for token, amount in balances.items():
            quote = snapshot.prices.get(token)
            decimals = snapshot.decimals.get(token)
            if quote is None or decimals is None:
                continue
            total += token_value(amount, quote.price_usd, decimals)
        return total

    async def maybe_sweep(
        self, snapshot: ChainSnapshot | None = None, force: bool = False
    ) -> SweepRecord | None:
        """Withdraw liquidator balances to the owner when a sweep is due.

        Raises:
            OwnershipRejected: the signer does not own the liquidator; sweeping
                stays disabled for the rest of the process.
        """
        if self._sweep_disabled:
            return None
        if self._coordinator is None:
            logger.warning("%s: no signer configured, sweep skipped", self._market.market_name)
            return None

        block = snapshot.block_number if snapshot is not None else "latest"
        balances = await self.balances(block)
        if not balances:
            return None

        value = self.value_of(balances, snapshot) if snapshot is not None else 0
        if not force and not self.should_sweep(value, has_balance=True):
            return None

        try:
            tx_hash = await self._coordinator.withdraw(list(balances))
        except OwnershipRejected:
            self._sweep_disabled = True
            logger.error("%s: sweeping disabled, signer does not own the liquidator",
                         self._market.market_name)
            raise

        record = SweepRecord(
            tx_hash=tx_hash,
            market=self._market.market_name,
            amounts=balances,
            recorded_at=self._clock(),
        )
        self._ledger.record_sweep(record)
        logger.info(
            "%s: swept %d tokens worth $%.2f in %s",
            self._market.market_name, len(balances), to_usd(value), tx_hash,
        )
        return record

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def build_report(self) -> str:
        name = self._market.market_name
        settlements = [s for s in self._ledger.settlements() if s.market == name]
        sweeps = [s for s in self._ledger.sweeps() if s.market == name]
        attempts = [a for a in self._ledger.attempts() if a.market == name]
        reverted = sum(1 for a in attempts if a.status is AttemptStatus.REVERTED)
        pending = sum(1 for a in attempts if a.status is AttemptStatus.PENDING)

        lines = [
            f"📊 {name}",
            f"Liquidations: {len(settlements)} settled, {reverted} reverted, {pending} pending",
        ]
        totals = self.totals()
        if totals:
            lines.append("Realized:")
            for token, amount in sorted(totals.items()):
                lines.append(f"  {token}: {amount}")
        if sweeps:
            last = max(sweeps, key=lambda s: s.recorded_at)
            lines.append(
                f"Sweeps: {len(sweeps)} (last {time.strftime('%Y-%m-%d %H:%M UTC', time.gmtime(last.recorded_at))})"
            )
        else:
            lines.append("Sweeps: none")
        if self._sweep_disabled:
            lines.append("⚠️ Sweeping disabled: signer is not the liquidator owner")
        return "\n".join(lines)
