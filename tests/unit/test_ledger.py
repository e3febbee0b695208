"""Unit tests for the JSON-lines ledger."""
from __future__ import annotations

import json
from dataclasses import asdict, replace
from pathlib import Path

import pytest

from fakes import USDC, WETH
from liquidation_engine.models import (
    AttemptStatus,
    ExecutionAttempt,
    SettlementRecord,
    SweepRecord,
)
from liquidation_engine.storage import Ledger


@pytest.fixture()
def ledger_path(tmp_path: Path) -> Path:
    return tmp_path / "ledger.jsonl"


def _attempt(tx_hash: str = "0xaa", status: AttemptStatus = AttemptStatus.PENDING):
    return ExecutionAttempt(
        position_id=1, market="blueberry", tx_hash=tx_hash, nonce=0,
        gas_price=10**9, status=status, submitted_at=1.0,
    )


def _settlement(tx_hash: str = "0xaa", usdc: int = 5000 * 10**6) -> SettlementRecord:
    return SettlementRecord(
        tx_hash=tx_hash, position_id=1, market="blueberry",
        amounts={USDC: usdc, WETH: 25 * 10**17}, block_number=101, recorded_at=2.0,
    )


def _attempt_entry() -> dict:
    return {"kind": "attempt", **asdict(_attempt()), "status": "pending"}


class TestAttempts:
    def test_latest_status_wins(self, ledger_path: Path) -> None:
        ledger = Ledger(ledger_path)
        ledger.record_attempt(_attempt())
        ledger.record_attempt(replace(_attempt(), status=AttemptStatus.CONFIRMED))
        assert ledger.pending_attempts() == []
        assert ledger.attempts()[0].status is AttemptStatus.CONFIRMED

    def test_pending_attempts_survive_restart(self, ledger_path: Path) -> None:
        Ledger(ledger_path).record_attempt(_attempt())
        reopened = Ledger(ledger_path)
        assert [a.tx_hash for a in reopened.pending_attempts()] == ["0xaa"]
        assert reopened.pending_attempts()[0].status is AttemptStatus.PENDING


class TestSettlements:
    def test_idempotent_by_tx_hash(self, ledger_path: Path) -> None:
        ledger = Ledger(ledger_path)
        assert ledger.record_settlement(_settlement()) is True
        assert ledger.record_settlement(_settlement()) is False
        assert ledger.totals() == {USDC: 5000 * 10**6, WETH: 25 * 10**17}
        assert len(ledger_path.read_text().splitlines()) == 1

    def test_replay_never_double_counts(self, ledger_path: Path) -> None:
        Ledger(ledger_path).record_settlement(_settlement())
        reopened = Ledger(ledger_path)
        assert reopened.record_settlement(_settlement()) is False
        assert reopened.has_settlement("0xaa")
        assert reopened.totals() == {USDC: 5000 * 10**6, WETH: 25 * 10**17}

    def test_totals_sum_across_settlements(self) -> None:
        ledger = Ledger()
        ledger.record_settlement(_settlement("0xaa", 100))
        ledger.record_settlement(_settlement("0xbb", 50))
        assert ledger.totals()[USDC] == 150
        assert ledger.totals("other-market") == {}

    def test_large_amounts_round_trip_exactly(self, ledger_path: Path) -> None:
        Ledger(ledger_path).record_settlement(_settlement(usdc=2**200 + 1))
        assert Ledger(ledger_path).totals()[USDC] == 2**200 + 1


class TestSweeps:
    def test_last_sweep_at(self) -> None:
        ledger = Ledger()
        assert ledger.last_sweep_at() is None
        ledger.record_sweep(SweepRecord("0x1", "blueberry", {USDC: 1}, 10.0))
        ledger.record_sweep(SweepRecord("0x2", "blueberry", {USDC: 1}, 20.0))
        assert ledger.last_sweep_at("blueberry") == 20.0
        assert ledger.last_sweep_at("other") is None
        assert ledger.record_sweep(SweepRecord("0x2", "blueberry", {USDC: 1}, 30.0)) is False


class TestFile:
    def test_append_only_json_lines(self, ledger_path: Path) -> None:
        ledger = Ledger(ledger_path)
        ledger.record_attempt(_attempt())
        ledger.record_settlement(_settlement())
        kinds = [json.loads(line)["kind"] for line in ledger_path.read_text().splitlines()]
        assert kinds == ["attempt", "settlement"]

    def test_corrupt_line_skipped(self, ledger_path: Path) -> None:
        Ledger(ledger_path).record_settlement(_settlement())
        with open(ledger_path, "a") as f:
            f.write("{not json\n")
        assert Ledger(ledger_path).has_settlement("0xaa")

    def test_malformed_entries_skipped(self, ledger_path: Path) -> None:
        Ledger(ledger_path).record_settlement(_settlement())
        with open(ledger_path, "a") as f:
            f.write(json.dumps({"kind": "settlement", "tx_hash": "0xbb"}) + "\n")
            f.write(json.dumps({"kind": "attempt", "tx_hash": "0xcc"}) + "\n")
            f.write(json.dumps({**_attempt_entry(), "status": "lost"}) + "\n")
            f.write("[1, 2]\n")

        reopened = Ledger(ledger_path)

        assert reopened.has_settlement("0xaa")
        assert not reopened.has_settlement("0xbb")
        assert reopened.attempts() == []

    def test_memory_only_writes_nothing(self, tmp_path: Path) -> None:
        ledger = Ledger()
        ledger.record_settlement(_settlement())
        assert list(tmp_path.iterdir()) == []
