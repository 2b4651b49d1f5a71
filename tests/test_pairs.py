"""
Unit tests for trading pair formatting.
"""

import pytest

from chart_radar.core.pairs import UNKNOWN_PAIR, format_trading_pair, is_valid_trading_pair


@pytest.mark.parametrize("raw,expected", [
    ("EUR/USD", "EUR/USD"),
    ("eur/usd", "EUR/USD"),
    ("eurusd", "EUR/USD"),
    ("GBPJPY", "GBP/JPY"),
    ("bitcoin", "BTC/USDT"),
    ("Ethereum", "ETH/USDT"),
    ("solana", "SOL/USDT"),
    ("tether", "BTC/USDT"),
    ("gold", "XAU/USD"),
    ("silver", "XAG/USD"),
    ("euro/dollar", "EUR/USD"),
    ("british pound / japanese yen", "GBP/JPY"),
    ("bitcoin/usdt", "BTC/USDT"),
    ("  btc/usdt  ", "BTC/USDT"),
])
def test_format_trading_pair(raw, expected):
    assert format_trading_pair(raw) == expected


def test_empty_input_is_unknown():
    assert format_trading_pair("") == UNKNOWN_PAIR
    assert format_trading_pair("   ") == UNKNOWN_PAIR
    assert format_trading_pair(None) == UNKNOWN_PAIR


def test_unrecognized_name_is_upper_cased():
    assert format_trading_pair("spx500") == "SPX500"


class TestIsValidTradingPair:
    """Test strict pair validation."""

    def test_valid(self):
        assert is_valid_trading_pair("EUR/USD")
        assert is_valid_trading_pair("BTC/USDT")

    def test_invalid(self):
        assert not is_valid_trading_pair("eur/usd")
        assert not is_valid_trading_pair("EURUSD")
        assert not is_valid_trading_pair(UNKNOWN_PAIR)
        assert not is_valid_trading_pair("")
        assert not is_valid_trading_pair(None)
