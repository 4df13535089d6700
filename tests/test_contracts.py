"""
tests/test_contracts.py
Tests for threshold/bracket parsing of contract identifiers.
"""

from datetime import date

import pytest

from core.contracts import ContractKind, parse_contract, parse_event_date


class TestParseContract:
    def test_threshold(self):
        terms = parse_contract("KXHIGHNY-26FEB10-T45")
        assert terms.kind == ContractKind.THRESHOLD
        assert terms.strike == 45.0
        assert terms.event_date == date(2026, 2, 10)

    def test_bracket_with_decimal(self):
        terms = parse_contract("KXHIGHNY-26FEB10-B44.5")
        assert terms.kind == ContractKind.BRACKET
        assert terms.strike == 44.5
        assert terms.bracket_range == (44.0, 45.0)

    def test_integral_bracket_is_one_wide(self):
        assert parse_contract("KXHIGHNY-26FEB10-B44").bracket_range == (44.0, 45.0)

    def test_lowercase_is_accepted(self):
        assert parse_contract("kxhighny-26feb10-t45").strike == 45.0

    def test_neither_threshold_nor_bracket(self):
        assert parse_contract("KXHIGHNY-26FEB10") is None
        assert parse_contract("SOMETHING-ELSE") is None

    def test_undated_contract(self):
        terms = parse_contract("KXHIGHNY-T45")
        assert terms.event_date is None


class TestYesWins:
    @pytest.mark.parametrize("observed,expected", [(44.9, False), (45.0, True), (51.0, True)])
    def test_threshold_is_inclusive(self, observed, expected):
        assert parse_contract("KXHIGHNY-26FEB10-T45").yes_wins(observed) is expected

    @pytest.mark.parametrize("observed,expected", [(43.9, False), (44.0, True), (44.9, True), (45.0, False)])
    def test_bracket_is_half_open(self, observed, expected):
        assert parse_contract("KXHIGHNY-26FEB10-B44.5").yes_wins(observed) is expected


class TestParseEventDate:
    def test_invalid_calendar_date(self):
        assert parse_event_date("KXHIGHNY-26FEB31-T45") is None

    def test_unknown_month(self):
        assert parse_event_date("KXHIGHNY-26ABC10-T45") is None
