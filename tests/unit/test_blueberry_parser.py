"""Unit tests for bank position parsing and receipt decoding."""
from __future__ import annotations

from fakes import BANK, BORROWER, DAI, LIQUIDATOR, USDC, WERC20, WETH, transfer_log
from liquidation_engine.models import WAD
from liquidation_engine.protocols.blueberry.parser import (
    ZERO_ADDRESS,
    collateral_asset,
    is_empty_info,
    parse_bank_threshold,
    parse_position_info,
    parse_transfers_to,
    token_value,
)


def _info(underlying=5000 * 10**6, coll_size=25 * 10**17, debt_share=5000 * 10**18):
    return (
        BORROWER.lower(), WERC20.lower(), USDC.lower(), DAI.lower(),
        underlying, int(WETH, 16), coll_size, debt_share,
    )


class TestParsePositionInfo:
    def test_fields_mapped(self) -> None:
        position = parse_position_info(3, _info(), 5100 * 10**18, "blueberry")
        assert position.id == 3
        assert position.owner == BORROWER
        assert position.collateral_token == WERC20
        assert position.collateral_id == int(WETH, 16)
        assert position.collateral_amount == 25 * 10**17
        assert position.underlying_token == USDC
        assert position.underlying_amount == 5000 * 10**6
        assert position.debt_token == DAI
        assert position.debt_amount == 5100 * 10**18
        assert position.debt_share == 5000 * 10**18
        assert position.market == "blueberry"


class TestIsEmptyInfo:
    def test_open_position(self) -> None:
        assert not is_empty_info(_info())

    def test_liquidated_position(self) -> None:
        assert is_empty_info(_info(underlying=0, coll_size=0, debt_share=0))

    def test_never_opened(self) -> None:
        assert is_empty_info((ZERO_ADDRESS,) * 4 + (0,) * 4)

    def test_debt_only_is_not_empty(self) -> None:
        assert not is_empty_info(_info(underlying=0, coll_size=0))


class TestCollateralAsset:
    def test_wrapped_collateral_unwraps_coll_id(self) -> None:
        position = parse_position_info(1, _info(), 0)
        assert collateral_asset(position, frozenset({WERC20})) == WETH

    def test_unknown_wrapper_priced_as_is(self) -> None:
        position = parse_position_info(1, _info(), 0)
        assert collateral_asset(position, frozenset()) == WERC20


class TestTokenValue:
    def test_six_decimals(self) -> None:
        assert token_value(5000 * 10**6, WAD, 6) == 5000 * WAD

    def test_eighteen_decimals(self) -> None:
        assert token_value(25 * 10**17, 2000 * WAD, 18) == 5000 * WAD

    def test_rounds_down(self) -> None:
        assert token_value(1, WAD // 3, 18) == 0


class TestParseBankThreshold:
    def _bank(self, listed: bool, threshold: int) -> tuple:
        return (listed, 0, ZERO_ADDRESS, ZERO_ADDRESS, ZERO_ADDRESS, 0, threshold)

    def test_listed_bank(self) -> None:
        assert parse_bank_threshold(self._bank(True, 9000)) == 9000

    def test_unlisted_bank(self) -> None:
        assert parse_bank_threshold(self._bank(False, 9000)) is None

    def test_zero_threshold_treated_as_unset(self) -> None:
        assert parse_bank_threshold(self._bank(True, 0)) is None


class TestParseTransfersTo:
    def test_sums_transfers_into_recipient(self) -> None:
        receipt = {
            "logs": [
                transfer_log(USDC, BANK, LIQUIDATOR, 100),
                transfer_log(USDC, BANK, LIQUIDATOR, 50),
                transfer_log(WETH, BANK, LIQUIDATOR, 7),
                transfer_log(DAI, LIQUIDATOR, BANK, 999),
            ]
        }
        assert parse_transfers_to(receipt, LIQUIDATOR) == {USDC: 150, WETH: 7}

    def test_ignores_other_events(self) -> None:
        receipt = {"logs": [{"address": USDC, "topics": ["0x" + "00" * 32], "data": "0x"}]}
        assert parse_transfers_to(receipt, LIQUIDATOR) == {}

    def test_empty_receipt(self) -> None:
        assert parse_transfers_to({}, LIQUIDATOR) == {}
