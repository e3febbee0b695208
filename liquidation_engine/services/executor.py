"""Execution Coordinator — submits plans and tracks their transactions.

Each position moves through ``idle -> planned -> submitted -> idle``. At most
one attempt per position is in flight; a replacement with a bumped gas price
reuses the nonce and supersedes the earlier attempt.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import Any

from ..config import EngineConfig, SignerConfig
from ..errors import (
    CallReverted,
    EngineError,
    InsufficientFunds,
    OwnershipRejected,
    RpcError,
    StaleQuote,
    TransactionReverted,
)
from ..interfaces.chain import ChainClient
from ..interfaces.lending import LendingMarket
from ..models import (
    AttemptStatus,
    ExecutionAttempt,
    LiquidationPlan,
    PositionState,
    RiskSnapshot,
)
from ..protocols.blueberry.adapter import encode_liquidate, encode_withdraw
from ..storage import Ledger
from .sender import TransactionSender

logger = logging.getLogger(__name__)

OWNER_REVERT = "caller is not the owner"
# restored attempts without calldata are given up after this many stuck timeouts
RESTORED_RELEASE_FACTOR = 5


def _gas_with_headroom(estimate: int) -> int:
    return estimate * 12 // 10


def _receipt_status(receipt: dict[str, Any]) -> AttemptStatus:
    status = receipt.get("status", "0x0")
    if isinstance(status, str):
        status = int(status, 16)
    return AttemptStatus.CONFIRMED if status == 1 else AttemptStatus.REVERTED


def _receipt_block(receipt: dict[str, Any]) -> int | None:
    block = receipt.get("blockNumber")
    if block is None:
        return None
    return int(block, 16) if isinstance(block, str) else int(block)


class ExecutionCoordinator:
    """Owns the per-position state machine of one market."""

    def __init__(
        self,
        chain_client: ChainClient,
        market: LendingMarket,
        sender: TransactionSender,
        ledger: Ledger,
        engine_config: EngineConfig,
        signer_config: SignerConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = chain_client
        self._market = market
        self._sender = sender
        self._ledger = ledger
        self._engine = engine_config
        self._signer = signer_config
        self._clock = clock

        self._states: dict[int, PositionState] = {}
        self._plans: dict[int, LiquidationPlan] = {}
        self._pending: dict[int, ExecutionAttempt] = {}
        self._replaced: dict[int, list[ExecutionAttempt]] = {}
        self._tx_params: dict[int, tuple[str, int]] = {}
        self._cooldown_until: dict[int, float] = {}

    @property
    def market_name(self) -> str:
        return self._market.market_name

    @property
    def sender(self) -> TransactionSender:
        return self._sender

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def state_of(self, position_id: int) -> PositionState:
        return self._states.get(position_id, PositionState.IDLE)

    def in_flight(self) -> frozenset[int]:
        return frozenset(self._pending)

    def pending_attempts(self) -> list[ExecutionAttempt]:
        return list(self._pending.values())

    def planned(self) -> list[LiquidationPlan]:
        """Accepted plans not yet submitted, best expected proceeds first."""
        plans = [
            self._plans[pid]
            for pid, state in self._states.items()
            if state is PositionState.PLANNED
        ]
        plans.sort(key=lambda p: (-p.expected_proceeds_usd, p.position_id))
        return plans

    def is_cooling_down(self, position_id: int) -> bool:
        until = self._cooldown_until.get(position_id)
        if until is None:
            return False
        if self._clock() >= until:
            del self._cooldown_until[position_id]
            return False
        return True

    def _cool_down(self, position_id: int) -> None:
        self._cooldown_until[position_id] = self._clock() + self._engine.cooldown_seconds

    def _to_idle(self, position_id: int) -> None:
        self._states.pop(position_id, None)
        self._plans.pop(position_id, None)

    def restore(self, attempts: Sequence[ExecutionAttempt]) -> int:
        """Re-adopt pending attempts recorded before a restart.

        Restored attempts are only watched for receipts; without their
        calldata they cannot be re-priced. One that stays unmined for
        ``RESTORED_RELEASE_FACTOR`` stuck timeouts is released back to idle.
        """
        restored = 0
        for attempt in attempts:
            if attempt.market != self.market_name or attempt.status is not AttemptStatus.PENDING:
                continue
            self._pending[attempt.position_id] = attempt
            self._states[attempt.position_id] = PositionState.SUBMITTED
            restored += 1
        if restored:
            logger.info("%s: restored %d pending attempts", self.market_name, restored)
        return restored

    def accept(self, plan: LiquidationPlan) -> bool:
        """Move a position to ``planned``. Refreshes an existing plan."""
        pid = plan.position_id
        if self.state_of(pid) is PositionState.SUBMITTED:
            return False
        if self.is_cooling_down(pid):
            logger.debug("%s: position %d cooling down, plan ignored", self.market_name, pid)
            return False
        self._states[pid] = PositionState.PLANNED
        self._plans[pid] = plan
        return True

    def cancel(self, position_id: int) -> bool:
        """Drop a plan that has not been submitted."""
        if self.state_of(position_id) is not PositionState.PLANNED:
            return False
        self._to_idle(position_id)
        logger.info("%s: plan for position %d cancelled", self.market_name, position_id)
        return True

    def reconcile(self, risks: Sequence[RiskSnapshot]) -> list[int]:
        """Cancel plans whose positions are no longer liquidatable."""
        still_liquidatable = {r.position_id for r in risks if r.liquidatable}
        cancelled = []
        for pid, state in list(self._states.items()):
            if state is PositionState.PLANNED and pid not in still_liquidatable:
                self.cancel(pid)
                cancelled.append(pid)
        return cancelled

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, plan: LiquidationPlan, block_number: int) -> ExecutionAttempt | None:
        """Submit an accepted plan.

        Returns the new attempt, or ``None`` when the position is already in
        flight or the on-chain preflight says it is healthy again.

        Raises:
            StaleQuote: the plan expired before submission; no transaction sent.
            TransactionReverted: gas estimation reverted; the position cools down.
            InsufficientFunds: the signer is out of gas money.
        """
        pid = plan.position_id
        if self.state_of(pid) is not PositionState.PLANNED:
            return None

        if plan.is_expired(block_number):
            self._to_idle(pid)
            raise StaleQuote(pid, plan.expires_at_block, block_number)

        # Claimed before the first await so a concurrent submit sees it
        self._states[pid] = PositionState.SUBMITTED
        try:
            attempt = await self._send_liquidation(pid)
        except BaseException:
            self._to_idle(pid)
            raise
        if attempt is None:
            self._to_idle(pid)
            return None

        self._pending[pid] = attempt
        self._ledger.record_attempt(attempt)
        logger.info(
            "%s: liquidation of position %d submitted in %s",
            self.market_name, pid, attempt.tx_hash,
        )
        return attempt

    async def _send_liquidation(self, pid: int) -> ExecutionAttempt | None:
        if self._engine.preflight and not await self._market.is_liquidatable(pid):
            logger.info(
                "%s: position %d no longer liquidatable on-chain, plan dropped",
                self.market_name, pid,
            )
            return None

        data = encode_liquidate(pid)
        try:
            estimate = await self._client.estimate_gas(
                {"from": self._sender.address, "to": self._market.liquidator_address, "data": data}
            )
        except CallReverted as e:
            self._cool_down(pid)
            raise TransactionReverted(pid, e.reason) from e

        gas = _gas_with_headroom(estimate)
        gas_price = await self._sender.initial_gas_price()
        tx_hash, nonce = await self._sender.send(
            self._market.liquidator_address, data, gas, gas_price
        )
        self._tx_params[pid] = (data, gas)
        return ExecutionAttempt(
            position_id=pid,
            market=self.market_name,
            tx_hash=tx_hash,
            nonce=nonce,
            gas_price=gas_price,
            submitted_at=self._clock(),
        )

    async def submit_planned(self, block_number: int) -> list[ExecutionAttempt]:
        """Submit every accepted plan, best first, isolating failures."""
        attempts = []
        for plan in self.planned():
            try:
                attempt = await self.submit(plan, block_number)
            except InsufficientFunds:
                raise
            except EngineError as e:
                logger.warning("%s: %s", self.market_name, e)
                continue
            if attempt is not None:
                attempts.append(attempt)
        return attempts

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def poll(self) -> list[tuple[ExecutionAttempt, dict[str, Any]]]:
        """Check receipts of in-flight attempts and re-price stuck ones.

        Returns ``(attempt, receipt)`` for each attempt that reached a final
        status on this call.
        """
        finished = []
        for pid, attempt in list(self._pending.items()):
            try:
                result = await self._check(pid, attempt)
            except InsufficientFunds:
                raise
            except EngineError as e:
                logger.warning(
                    "%s: could not track position %d: %s", self.market_name, pid, e
                )
                continue
            if result is not None:
                finished.append(result)
        return finished

    async def _check(
        self, pid: int, attempt: ExecutionAttempt
    ) -> tuple[ExecutionAttempt, dict[str, Any]] | None:
        candidates = [attempt, *self._replaced.get(pid, [])]
        for candidate in candidates:
            receipt = await self._client.get_transaction_receipt(candidate.tx_hash)
            if receipt:
                return self._finish(pid, candidate, candidates, receipt)

        age = self._clock() - attempt.submitted_at
        stuck = self._signer.stuck_timeout_seconds
        if pid not in self._tx_params and age >= RESTORED_RELEASE_FACTOR * stuck:
            self._release(pid, candidates)
        elif age >= stuck:
            await self._replace(pid, attempt)
        return None

    def _release(self, pid: int, candidates: list[ExecutionAttempt]) -> None:
        for candidate in candidates:
            if candidate.status is not AttemptStatus.SUPERSEDED:
                self._ledger.record_attempt(replace(candidate, status=AttemptStatus.SUPERSEDED))
        self._pending.pop(pid, None)
        self._replaced.pop(pid, None)
        self._to_idle(pid)
        logger.warning(
            "%s: restored attempt %s for position %d never mined, released",
            self.market_name, candidates[0].tx_hash, pid,
        )

    def _finish(
        self,
        pid: int,
        mined: ExecutionAttempt,
        candidates: list[ExecutionAttempt],
        receipt: dict[str, Any],
    ) -> tuple[ExecutionAttempt, dict[str, Any]]:
        final = replace(
            mined, status=_receipt_status(receipt), block_number=_receipt_block(receipt)
        )
        self._ledger.record_attempt(final)
        for other in candidates:
            if other.tx_hash != mined.tx_hash and other.status is not AttemptStatus.SUPERSEDED:
                self._ledger.record_attempt(replace(other, status=AttemptStatus.SUPERSEDED))

        self._pending.pop(pid, None)
        self._replaced.pop(pid, None)
        self._tx_params.pop(pid, None)
        self._to_idle(pid)

        if final.status is AttemptStatus.CONFIRMED:
            logger.info(
                "%s: liquidation of position %d confirmed in block %s",
                self.market_name, pid, final.block_number,
            )
        else:
            self._cool_down(pid)
            logger.warning(
                "%s: %s",
                self.market_name,
                TransactionReverted(pid, "transaction reverted on-chain", final.tx_hash),
            )
        return final, receipt

    async def _replace(self, pid: int, attempt: ExecutionAttempt) -> None:
        params = self._tx_params.get(pid)
        if params is None:
            return
        new_price = await self._sender.bumped_gas_price(attempt.gas_price)
        if new_price is None:
            logger.warning(
                "%s: position %d stuck at the gas price cap", self.market_name, pid
            )
            return

        data, gas = params
        try:
            tx_hash, _ = await self._sender.send(
                self._market.liquidator_address, data, gas, new_price, nonce=attempt.nonce
            )
        except InsufficientFunds:
            raise
        except RpcError as e:
            # the original was most likely mined; the next poll finds its receipt
            logger.info("%s: replacement for position %d rejected: %s", self.market_name, pid, e)
            return

        superseded = replace(attempt, status=AttemptStatus.SUPERSEDED)
        self._ledger.record_attempt(superseded)
        self._replaced.setdefault(pid, []).append(superseded)

        replacement = replace(
            attempt, tx_hash=tx_hash, gas_price=new_price, submitted_at=self._clock()
        )
        self._pending[pid] = replacement
        self._ledger.record_attempt(replacement)
        logger.info(
            "%s: position %d re-priced %s -> %s", self.market_name, pid, attempt.tx_hash, tx_hash
        )

    # ------------------------------------------------------------------
    # Treasury
    # ------------------------------------------------------------------

    async def withdraw(self, tokens: Sequence[str]) -> str:
        """Send ``withdraw(tokens)`` from the signer to the liquidator.

        The call is simulated first so a non-owner signer never pays gas.

        Raises:
            OwnershipRejected: the signer does not own the liquidator.
            CallReverted: the withdrawal would revert for another reason.
        """
        data = encode_withdraw(tokens)
        liquidator = self._market.liquidator_address
        try:
            await self._client.call(liquidator, data, "latest", from_address=self._sender.address)
            estimate = await self._client.estimate_gas(
                {"from": self._sender.address, "to": liquidator, "data": data}
            )
        except CallReverted as e:
            if OWNER_REVERT in e.reason:
                raise OwnershipRejected(
                    f"{self._sender.address} does not own liquidator {liquidator}"
                ) from e
            raise

        gas_price = await self._sender.initial_gas_price()
        tx_hash, _ = await self._sender.send(
            liquidator, data, _gas_with_headroom(estimate), gas_price
        )
        logger.info("%s: withdraw of %d tokens sent in %s", self.market_name, len(tokens), tx_hash)
        return tx_hash
