"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

RISK_FORMULAS = ("bank", "ratio")
REQUIRED_CONTRACTS = ("bank", "oracle", "liquidator")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    poll_interval_seconds: float = 12.0
    safety_margin_bps: int = 200
    risk_formula: str = "bank"
    max_concurrent_plans: int = 4
    plan_ttl_blocks: int = 3
    cooldown_seconds: float = 300.0
    stale_after_seconds: float = 120.0
    min_profit_usd: float = 0.0
    preflight: bool = True
    dry_run: bool = False


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int = 1
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    max_retries: int = 5
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0
    native_token: str = ""


@dataclass(frozen=True)
class MarketConfig:
    chain: str = ""
    contracts: dict[str, str] = field(default_factory=dict)
    liquidation_threshold_bps: int = 8500
    liquidation_fee_bps: int = 0
    token_decimals: dict[str, int] = field(default_factory=dict)
    liquidation_thresholds: dict[str, int] = field(default_factory=dict)
    wrapped_collateral: tuple[str, ...] = ()


@dataclass(frozen=True)
class SignerConfig:
    private_key: str = ""
    gas_limit: int = 1_500_000
    gas_price_multiplier: float = 1.1
    max_gas_price_gwei: float = 500.0
    bump_percent: int = 15
    stuck_timeout_seconds: float = 60.0


@dataclass(frozen=True)
class AggregatorConfig:
    provider: str = "paraswap"
    base_url: str = "https://api.paraswap.io"
    slippage_bps: int = 100
    timeout: int = 15


@dataclass(frozen=True)
class TreasuryConfig:
    sweep_tokens: tuple[str, ...] = ()
    sweep_threshold_usd: float = 1000.0
    sweep_interval_minutes: int = 1440
    ledger_path: str = "ledger.jsonl"


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    chains: dict[str, ChainConfig] = field(default_factory=dict)
    markets: dict[str, MarketConfig] = field(default_factory=dict)
    signer: SignerConfig = field(default_factory=SignerConfig)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    treasury: TreasuryConfig = field(default_factory=TreasuryConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    return EngineConfig(
        poll_interval_seconds=float(raw.get("poll_interval_seconds", 12.0)),
        safety_margin_bps=int(raw.get("safety_margin_bps", 200)),
        risk_formula=str(raw.get("risk_formula", "bank")),
        max_concurrent_plans=int(raw.get("max_concurrent_plans", 4)),
        plan_ttl_blocks=int(raw.get("plan_ttl_blocks", 3)),
        cooldown_seconds=float(raw.get("cooldown_seconds", 300.0)),
        stale_after_seconds=float(raw.get("stale_after_seconds", 120.0)),
        min_profit_usd=float(raw.get("min_profit_usd", 0.0)),
        preflight=bool(raw.get("preflight", True)),
        dry_run=bool(raw.get("dry_run", False)),
    )


def _build_chains(raw: dict[str, Any]) -> dict[str, ChainConfig]:
    chains: dict[str, ChainConfig] = {}
    for name, cfg in raw.items():
        chains[name] = ChainConfig(
            chain_id=int(cfg.get("chain_id", 1)),
            rpc_endpoints=tuple(cfg.get("rpc_endpoints", [])),
            rpc_timeout=int(cfg.get("rpc_timeout", 30)),
            max_retries=int(cfg.get("max_retries", 5)),
            backoff_base_seconds=float(cfg.get("backoff_base_seconds", 0.5)),
            backoff_max_seconds=float(cfg.get("backoff_max_seconds", 8.0)),
            native_token=cfg.get("native_token", ""),
        )
    return chains


def _build_markets(raw: dict[str, Any]) -> dict[str, MarketConfig]:
    markets: dict[str, MarketConfig] = {}
    for name, cfg in raw.items():
        markets[name] = MarketConfig(
            chain=cfg.get("chain", ""),
            contracts=dict(cfg.get("contracts", {})),
            liquidation_threshold_bps=int(cfg.get("liquidation_threshold_bps", 8500)),
            liquidation_fee_bps=int(cfg.get("liquidation_fee_bps", 0)),
            token_decimals={
                k: int(v) for k, v in (cfg.get("token_decimals") or {}).items()
            },
            liquidation_thresholds={
                k: int(v) for k, v in (cfg.get("liquidation_thresholds") or {}).items()
            },
            wrapped_collateral=tuple(cfg.get("wrapped_collateral", [])),
        )
    return markets


def _build_signer(raw: dict[str, Any]) -> SignerConfig:
    return SignerConfig(
        private_key=raw.get("private_key", ""),
        gas_limit=int(raw.get("gas_limit", 1_500_000)),
        gas_price_multiplier=float(raw.get("gas_price_multiplier", 1.1)),
        max_gas_price_gwei=float(raw.get("max_gas_price_gwei", 500.0)),
        bump_percent=int(raw.get("bump_percent", 15)),
        stuck_timeout_seconds=float(raw.get("stuck_timeout_seconds", 60.0)),
    )


def _build_aggregator(raw: dict[str, Any]) -> AggregatorConfig:
    return AggregatorConfig(
        provider=raw.get("provider", "paraswap"),
        base_url=raw.get("base_url", AggregatorConfig.base_url),
        slippage_bps=int(raw.get("slippage_bps", 100)),
        timeout=int(raw.get("timeout", 15)),
    )


def _build_treasury(raw: dict[str, Any]) -> TreasuryConfig:
    return TreasuryConfig(
        sweep_tokens=tuple(raw.get("sweep_tokens", [])),
        sweep_threshold_usd=float(raw.get("sweep_threshold_usd", 1000.0)),
        sweep_interval_minutes=int(raw.get("sweep_interval_minutes", 1440)),
        ledger_path=raw.get("ledger_path", "ledger.jsonl"),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    em = raw.get("email", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
        email=EmailConfig(
            enabled=bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate engine configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from the package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine", {})),
        chains=_build_chains(raw.get("chains", {})),
        markets=_build_markets(raw.get("markets", {})),
        signer=_build_signer(raw.get("signer", {})),
        aggregator=_build_aggregator(raw.get("aggregator", {})),
        treasury=_build_treasury(raw.get("treasury", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.markets:
        raise ValueError("At least one market must be configured")

    if cfg.engine.risk_formula not in RISK_FORMULAS:
        raise ValueError(
            f"Unknown risk formula '{cfg.engine.risk_formula}' "
            f"(expected one of {', '.join(RISK_FORMULAS)})"
        )

    for name, chain in cfg.chains.items():
        if not chain.rpc_endpoints:
            raise ValueError(f"Chain '{name}' has no RPC endpoints")

    for name, market in cfg.markets.items():
        if market.chain not in cfg.chains:
            raise ValueError(f"Market '{name}' references unknown chain '{market.chain}'")
        missing = [c for c in REQUIRED_CONTRACTS if not market.contracts.get(c)]
        if missing:
            raise ValueError(
                f"Market '{name}' is missing contract addresses: {', '.join(missing)}"
            )
