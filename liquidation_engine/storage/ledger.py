"""Append-only JSON-lines ledger of attempts, settlements and sweeps.

The file is never rewritten; the in-memory view is rebuilt by replaying it on
start, so reprocessing after a restart is idempotent.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any

from ..models import AttemptStatus, ExecutionAttempt, SettlementRecord, SweepRecord

logger = logging.getLogger(__name__)


class Ledger:
    """Engine-local persisted state. ``path=None`` keeps it in memory only."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._attempts: dict[str, ExecutionAttempt] = {}
        self._settlements: dict[str, SettlementRecord] = {}
        self._sweeps: dict[str, SweepRecord] = {}
        if self._path is not None and self._path.exists():
            self._replay()

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def _replay(self) -> None:
        if self._path is None:
            return
        count = 0
        with open(self._path) as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Ledger %s line %d is corrupt, skipped", self._path, lineno)
                    continue
                if not isinstance(entry, dict):
                    logger.warning("Ledger %s line %d is not an entry, skipped", self._path, lineno)
                    continue
                try:
                    self._apply(entry)
                except (TypeError, KeyError, ValueError) as e:
                    logger.warning(
                        "Ledger %s line %d is malformed (%s), skipped", self._path, lineno, e
                    )
                    continue
                count += 1
        logger.info(
            "Ledger replayed %d entries (%d attempts, %d settlements, %d sweeps)",
            count, len(self._attempts), len(self._settlements), len(self._sweeps),
        )

    def _apply(self, entry: dict[str, Any]) -> None:
        kind = entry.pop("kind", None)
        if kind == "attempt":
            entry["status"] = AttemptStatus(entry["status"])
            attempt = ExecutionAttempt(**entry)
            self._attempts[attempt.tx_hash] = attempt
        elif kind == "settlement":
            record = SettlementRecord(**entry)
            self._settlements.setdefault(record.tx_hash, record)
        elif kind == "sweep":
            record = SweepRecord(**entry)
            self._sweeps.setdefault(record.tx_hash, record)
        else:
            logger.warning("Unknown ledger entry kind: %s", kind)

    def _write(self, kind: str, payload: dict[str, Any]) -> None:
        if self._path is None:
            return
        line = json.dumps({"kind": kind, **payload}, sort_keys=True)
        with open(self._path, "a") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_attempt(self, attempt: ExecutionAttempt) -> None:
        """Append an attempt status change. The latest entry per hash wins."""
        payload = asdict(attempt)
        payload["status"] = attempt.status.value
        self._write("attempt", payload)
        self._attempts[attempt.tx_hash] = attempt

    def record_settlement(self, record: SettlementRecord) -> bool:
        """Append a settlement; returns False when the tx was already settled."""
        if record.tx_hash in self._settlements:
            return False
        payload = {
            "tx_hash": record.tx_hash,
            "position_id": record.position_id,
            "market": record.market,
            "amounts": dict(record.amounts),
            "block_number": record.block_number,
            "recorded_at": record.recorded_at,
        }
        self._write("settlement", payload)
        self._settlements[record.tx_hash] = record
        return True

    def record_sweep(self, record: SweepRecord) -> bool:
        if record.tx_hash in self._sweeps:
            return False
        payload = {
            "tx_hash": record.tx_hash,
            "market": record.market,
            "amounts": dict(record.amounts),
            "recorded_at": record.recorded_at,
        }
        self._write("sweep", payload)
        self._sweeps[record.tx_hash] = record
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def has_settlement(self, tx_hash: str) -> bool:
        return tx_hash in self._settlements

    def attempts(self) -> list[ExecutionAttempt]:
        return list(self._attempts.values())

    def pending_attempts(self) -> list[ExecutionAttempt]:
        return [a for a in self._attempts.values() if a.status is AttemptStatus.PENDING]

    def settlements(self) -> list[SettlementRecord]:
        return list(self._settlements.values())

    def sweeps(self) -> list[SweepRecord]:
        return list(self._sweeps.values())

    def last_sweep_at(self, market: str | None = None) -> float | None:
        times = [s.recorded_at for s in self._sweeps.values() if market in (None, s.market)]
        return max(times) if times else None

    def totals(self, market: str | None = None) -> dict[str, int]:
        """Realized proceeds per token across all settlements."""
        totals: dict[str, int] = {}
        for record in self._settlements.values():
            if market not in (None, record.market):
                continue
            for token, amount in record.amounts.items():
                totals[token] = totals.get(token, 0) + amount
        return totals
