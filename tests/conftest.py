"""Shared test fixtures."""
from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from fakes import (
    BANK,
    LIQUIDATOR,
    ORACLE,
    SIGNER_KEY,
    USDC,
    WERC20,
    WETH,
    FakeChain,
    OracleRateAggregator,
)
from liquidation_engine.config import (
    AggregatorConfig,
    AppConfig,
    ChainConfig,
    EmailConfig,
    EngineConfig,
    MarketConfig,
    NotificationsConfig,
    SignerConfig,
    TelegramConfig,
    TreasuryConfig,
)

# ---------------------------------------------------------------------------
# Chain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def aggregator(fake_chain: FakeChain) -> OracleRateAggregator:
    return OracleRateAggregator(fake_chain)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        chain_id=1,
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
        max_retries=2,
        backoff_base_seconds=0,
        backoff_max_seconds=0,
        native_token=WETH,
    )


@pytest.fixture()
def sample_market_config() -> MarketConfig:
    return MarketConfig(
        chain="mainnet",
        contracts={"bank": BANK, "oracle": ORACLE, "liquidator": LIQUIDATOR},
        liquidation_threshold_bps=8500,
        wrapped_collateral=(WERC20,),
    )


@pytest.fixture()
def sample_engine_config() -> EngineConfig:
    return EngineConfig(
        poll_interval_seconds=0,
        safety_margin_bps=200,
        plan_ttl_blocks=3,
        cooldown_seconds=300,
        stale_after_seconds=120,
    )


@pytest.fixture()
def sample_signer_config() -> SignerConfig:
    return SignerConfig(
        private_key=SIGNER_KEY,
        gas_limit=1_500_000,
        gas_price_multiplier=1.1,
        max_gas_price_gwei=100,
        bump_percent=15,
        stuck_timeout_seconds=60,
    )


@pytest.fixture()
def sample_app_config(
    sample_engine_config: EngineConfig,
    sample_chain_config: ChainConfig,
    sample_market_config: MarketConfig,
    sample_signer_config: SignerConfig,
) -> AppConfig:
    return AppConfig(
        engine=sample_engine_config,
        chains={"mainnet": sample_chain_config},
        markets={"blueberry": sample_market_config},
        signer=sample_signer_config,
        aggregator=AggregatorConfig(),
        treasury=TreasuryConfig(
            sweep_tokens=(USDC, WETH),
            sweep_threshold_usd=1000,
            sweep_interval_minutes=60,
            ledger_path="",
        ),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
            email=EmailConfig(enabled=False),
        ),
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent(f"""\
    engine:
      poll_interval_seconds: 6
      safety_margin_bps: 300
      risk_formula: bank
      plan_ttl_blocks: 2
      min_profit_usd: 10
    chains:
      mainnet:
        chain_id: 1
        rpc_endpoints: ["https://rpc.example.com"]
        rpc_timeout: 10
        native_token: "{WETH}"
    markets:
      blueberry:
        chain: mainnet
        contracts:
          bank: "{BANK}"
          oracle: "{ORACLE}"
          liquidator: "{LIQUIDATOR}"
        liquidation_threshold_bps: 8500
        token_decimals: {{"{USDC}": 6}}
        wrapped_collateral: ["{WERC20}"]
    signer:
      private_key: "{SIGNER_KEY}"
      max_gas_price_gwei: 200
    aggregator:
      slippage_bps: 50
    treasury:
      sweep_tokens: ["{USDC}"]
      sweep_threshold_usd: 500
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: "999"
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
