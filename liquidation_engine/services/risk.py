"""Risk Evaluator — pure, integer-only risk arithmetic.

Two formulas are supported:

``bank``
    Mirrors ``BlueberryBank.getPositionRisk`` / ``isLiquidatable``::

        risk = (ov - pv) * 10000 / cv   if ov > pv else 0
        liquidatable = risk >= liqThreshold(underlying)

    where ``pv`` is the collateral (position) value, ``ov`` the debt value and
    ``cv`` the isolated underlying value. The health ratio
    ``(pv + cv * LT) / ov`` is <= 1 exactly when the bank liquidates.

``ratio``
    ``health = (pv + cv) * LT / ov``; liquidatable iff ``health < 1``.
"""
from __future__ import annotations

from ..models import BPS, WAD, ChainSnapshot, Position, RiskSnapshot
from ..protocols.blueberry.parser import token_value

MAX_HEALTH = 2**256 - 1
MAX_RISK = 2**256 - 1


def _value(snapshot: ChainSnapshot, token: str, amount: int) -> int:
    return token_value(amount, snapshot.price_of(token), snapshot.decimals[token])


def assess(
    position: Position,
    snapshot: ChainSnapshot,
    formula: str = "bank",
    default_threshold_bps: int = 8500,
) -> RiskSnapshot:
    """Compute the risk figures of one position against one snapshot."""
    pv = _value(snapshot, snapshot.collateral_asset(position), position.collateral_amount)
    cv = _value(snapshot, position.underlying_token, position.underlying_amount)
    ov = _value(snapshot, position.debt_token, position.debt_amount)
    lt = snapshot.liquidation_thresholds.get(position.underlying_token, default_threshold_bps)

    if ov > pv:
        risk = (ov - pv) * BPS // cv if cv > 0 else MAX_RISK
    else:
        risk = 0

    if formula == "bank":
        numerator = pv * BPS + cv * lt
        liquidatable = ov > 0 and risk >= lt
    elif formula == "ratio":
        numerator = (pv + cv) * lt
        liquidatable = ov > 0 and numerator < ov * BPS
    else:
        raise ValueError(f"Unknown risk formula: {formula}")

    health = numerator * WAD // (ov * BPS) if ov > 0 else MAX_HEALTH

    return RiskSnapshot(
        position_id=position.id,
        collateral_value_usd=pv,
        underlying_value_usd=cv,
        debt_value_usd=ov,
        liquidation_threshold_bps=lt,
        health_ratio=health,
        risk_bps=risk,
        liquidatable=liquidatable,
        estimated_profit_usd=pv + cv - ov,
    )


def evaluate(
    snapshot: ChainSnapshot,
    safety_margin_bps: int = 0,
    formula: str = "bank",
    default_threshold_bps: int = 8500,
) -> list[RiskSnapshot]:
    """Return at-risk positions, most profitable first.

    A position is at risk when it is liquidatable or its health ratio is
    below ``1 + safety_margin``. Stale snapshots yield nothing.
    """
    if snapshot.stale:
        return []

    watch_line = WAD + WAD * safety_margin_bps // BPS
    at_risk = []
    for position in snapshot.positions.values():
        risk = assess(position, snapshot, formula, default_threshold_bps)
        if risk.liquidatable or risk.health_ratio < watch_line:
            at_risk.append(risk)

    at_risk.sort(key=lambda r: (-r.estimated_profit_usd, r.position_id))
    return at_risk


def liquidatable_only(risks: list[RiskSnapshot]) -> list[RiskSnapshot]:
    return [r for r in risks if r.liquidatable]
