"""Unit tests for config loading, env interpolation, and validation."""
from __future__ import annotations

from pathlib import Path

import pytest

from fakes import BANK, LIQUIDATOR, SIGNER_KEY, USDC, WERC20
from liquidation_engine.config import (
    AppConfig,
    ChainConfig,
    EngineConfig,
    MarketConfig,
    _interpolate_env,
    _validate,
    load_config,
)


class TestInterpolateEnv:
    def test_simple_substitution(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MY_VAR", "hello")
        assert _interpolate_env("${MY_VAR}") == "hello"

    def test_missing_var_becomes_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NONEXISTENT_VAR_XYZ", raising=False)
        assert _interpolate_env("${NONEXISTENT_VAR_XYZ}") == ""

    def test_nested_dict_and_list(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RPC", "https://node.example.com")
        result = _interpolate_env({"rpc_endpoints": ["${RPC}", "https://fallback"]})
        assert result == {"rpc_endpoints": ["https://node.example.com", "https://fallback"]}

    def test_non_string_passthrough(self) -> None:
        assert _interpolate_env(42) == 42
        assert _interpolate_env(True) is True


class TestLoadConfig:
    def test_loads_valid_yaml(self, sample_yaml_path: Path) -> None:
        cfg = load_config(sample_yaml_path)
        assert isinstance(cfg, AppConfig)
        assert cfg.engine.poll_interval_seconds == 6
        assert cfg.engine.safety_margin_bps == 300
        assert cfg.engine.plan_ttl_blocks == 2
        assert cfg.engine.min_profit_usd == 10
        assert cfg.chains["mainnet"].rpc_endpoints == ("https://rpc.example.com",)
        market = cfg.markets["blueberry"]
        assert market.contracts["bank"] == BANK
        assert market.contracts["liquidator"] == LIQUIDATOR
        assert market.token_decimals == {USDC: 6}
        assert market.wrapped_collateral == (WERC20,)
        assert cfg.signer.private_key == SIGNER_KEY
        assert cfg.signer.max_gas_price_gwei == 200
        assert cfg.aggregator.slippage_bps == 50
        assert cfg.treasury.sweep_tokens == (USDC,)
        assert cfg.notifications.telegram.chat_id == "999"

    def test_defaults_for_omitted_sections(self, sample_yaml_path: Path) -> None:
        cfg = load_config(sample_yaml_path)
        assert cfg.engine.risk_formula == "bank"
        assert cfg.engine.preflight is True
        assert cfg.engine.dry_run is False
        assert cfg.chains["mainnet"].max_retries == 5
        assert cfg.signer.bump_percent == 15
        assert cfg.aggregator.base_url == "https://api.paraswap.io"
        assert cfg.treasury.ledger_path == "ledger.jsonl"

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_env_interpolation_in_yaml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TEST_BANK", BANK)
        monkeypatch.setenv("TEST_KEY", SIGNER_KEY)
        yaml_content = f"""\
chains:
  mainnet:
    rpc_endpoints: ["https://rpc.test.com"]
markets:
  blueberry:
    chain: mainnet
    contracts:
      bank: "${{TEST_BANK}}"
      oracle: "{BANK}"
      liquidator: "{LIQUIDATOR}"
signer:
  private_key: "${{TEST_KEY}}"
"""
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text(yaml_content)
        cfg = load_config(cfg_file)
        assert cfg.markets["blueberry"].contracts["bank"] == BANK
        assert cfg.signer.private_key == SIGNER_KEY

    def test_empty_file_rejected(self, tmp_path: Path) -> None:
        cfg_file = tmp_path / "config.yaml"
        cfg_file.write_text("")
        with pytest.raises(ValueError, match="At least one market"):
            load_config(cfg_file)


class TestValidate:
    def _config(self, **overrides) -> AppConfig:
        base = dict(
            chains={"mainnet": ChainConfig(rpc_endpoints=("https://rpc",))},
            markets={
                "blueberry": MarketConfig(
                    chain="mainnet",
                    contracts={"bank": BANK, "oracle": BANK, "liquidator": LIQUIDATOR},
                )
            },
        )
        base.update(overrides)
        return AppConfig(**base)

    def test_valid_config_passes(self) -> None:
        _validate(self._config())

    def test_no_markets(self) -> None:
        with pytest.raises(ValueError, match="At least one market"):
            _validate(self._config(markets={}))

    def test_unknown_risk_formula(self) -> None:
        with pytest.raises(ValueError, match="Unknown risk formula"):
            _validate(self._config(engine=EngineConfig(risk_formula="aave")))

    def test_chain_without_endpoints(self) -> None:
        with pytest.raises(ValueError, match="has no RPC endpoints"):
            _validate(self._config(chains={"mainnet": ChainConfig()}))

    def test_market_on_unknown_chain(self) -> None:
        markets = {"blueberry": MarketConfig(chain="arbitrum", contracts={})}
        with pytest.raises(ValueError, match="unknown chain"):
            _validate(self._config(markets=markets))

    def test_missing_contracts(self) -> None:
        markets = {"blueberry": MarketConfig(chain="mainnet", contracts={"bank": BANK})}
        with pytest.raises(ValueError, match="oracle, liquidator"):
            _validate(self._config(markets=markets))

    def test_private_key_is_optional(self) -> None:
        # scan and report run without a signer
        cfg = self._config()
        assert cfg.signer.private_key == ""
        _validate(cfg)
