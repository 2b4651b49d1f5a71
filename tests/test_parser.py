"""
Unit tests for provider response parsing.

Tests each response shape and that malformed input never raises.
"""

from unittest.mock import patch

import pytest

from chart_radar.core.parser import (
    DEFAULT_CONFIDENCE,
    ParseContext,
    ResponseFormat,
    ResponseParser,
    UNKNOWN_TIMEFRAME,
    classify_keywords,
    classify_sentiment,
    detect_format,
    extract_numbers,
    parse_response
)
from chart_radar.core.pairs import UNKNOWN_PAIR
from chart_radar.storage.models import Direction, Sentiment, SetupType

SINGLE_SHOT = (
    "TREND: Strong bullish momentum\n"
    "SUPPORT:\n"
    "1. 1.0950\n"
    "2. 1.0900\n"
    "RESISTANCE:\n"
    "1. 1.1050\n"
    "PATTERN: Double bottom\n"
    "INDICATORS: RSI oversold"
)

PROMPTED_CHART = """TRADING PAIR: BTC/USDT
TIMEFRAME: 4H
TREND: Bearish, sellers pressing lower highs
SUPPORT:
1. 61,200
2. 60,000
RESISTANCE:
1. 64,500
PATTERN: Descending triangle, forming
INDICATORS: MACD negative crossover, volume under pressure
TRADE SETUP: Entry 62,800 / Stop 64,900 / Target 60,100
RISK/REWARD: 1:1.3
CONFIDENCE: 68%
ANALYSIS: Price is compressing under a falling trendline.
"""

MULTI_SECTION = """**1. Current Market Data:**
- Pair: EUR/USD
- Timeframe: 4H
- Trend: Bullish with mild momentum

**2. Key Price Levels:**
- Support: 1.0850, 1.0800
- Resistance: 1.0950

**3. Trading Setup:**
- Entry: 1.0870
- Stop Loss: 1.0820
- Target 1: 1.0950
- Target 2: 1.1000
- Risk/Reward: 1:2.5

**4. Market Factors:**
- ECB policy remains supportive and positive for the euro
- USD under pressure after weak data

**5. Trader's Commentary:**
Buyers are in control above 1.0850.
Confidence: 80%
"""


class TestSingleShot:
    """Test labeled single-shot responses."""

    def setup_method(self):
        self.result = parse_response(SINGLE_SHOT)

    def test_trend(self):
        assert self.result.trend_direction is Sentiment.BULLISH
        assert self.result.overall_sentiment is Sentiment.BULLISH

    def test_support_levels(self):
        supports = self.result.support_levels

        assert [level.price for level in supports] == ["1.0950", "1.0900"]
        assert all(level.direction is Direction.DOWN for level in supports)
        assert supports[0].name == "Support Level 1"

    def test_resistance_levels(self):
        resistances = self.result.resistance_levels

        assert [level.price for level in resistances] == ["1.1050"]
        assert resistances[0].direction is Direction.UP

    def test_supports_precede_resistances(self):
        directions = [level.direction for level in self.result.price_levels]

        assert directions == [Direction.DOWN, Direction.DOWN, Direction.UP]

    def test_pattern(self):
        assert len(self.result.chart_patterns) == 1
        pattern = self.result.chart_patterns[0]
        assert pattern.name == "Double bottom"
        assert pattern.signal is Sentiment.BULLISH
        assert pattern.confidence == 70

    def test_indicators_become_one_factor(self):
        assert len(self.result.market_factors) == 1
        factor = self.result.market_factors[0]
        assert "RSI" in factor.description
        assert factor.sentiment is Sentiment.NEUTRAL

    def test_defaults_for_missing_fields(self):
        assert self.result.confidence_score == DEFAULT_CONFIDENCE[ResponseFormat.SINGLE_SHOT]
        assert self.result.trading_setup is None
        assert self.result.pair_name == UNKNOWN_PAIR
        assert self.result.timeframe == UNKNOWN_TIMEFRAME
        assert self.result.trading_insight == ""

    def test_context_overrides_detection(self):
        result = parse_response(SINGLE_SHOT, ParseContext(symbol="eurusd", timeframe="1H"))

        assert result.pair_name == "EUR/USD"
        assert result.timeframe == "1H"


class TestPromptedChart:
    """Test the labeled chart template output."""

    def setup_method(self):
        self.result = parse_response(PROMPTED_CHART)

    def test_detected_pair_and_timeframe(self):
        assert self.result.pair_name == "BTC/USDT"
        assert self.result.timeframe == "4H"

    def test_thousands_separators_survive(self):
        assert [level.price for level in self.result.support_levels] == ["61,200", "60,000"]
        assert [level.price for level in self.result.resistance_levels] == ["64,500"]

    def test_trading_setup(self):
        setup = self.result.trading_setup

        assert setup is not None
        assert setup.type is SetupType.SHORT
        assert setup.entry == "62,800"
        assert setup.stop_loss == "64,900"
        assert setup.targets == ("60,100",)
        assert setup.risk_reward == "1:1.3"
        assert setup.confidence == 68

    def test_confidence_and_analysis(self):
        assert self.result.confidence_score == 68
        assert self.result.market_analysis == "Price is compressing under a falling trendline."

    def test_bearish_keywords(self):
        assert self.result.overall_sentiment is Sentiment.BEARISH
        assert self.result.market_factors[0].sentiment is Sentiment.BEARISH
        assert self.result.chart_patterns[0].status == "forming"


class TestMultiSection:
    """Test numbered-section responses."""

    def setup_method(self):
        self.result = parse_response(MULTI_SECTION)

    def test_format_detected(self):
        assert detect_format(MULTI_SECTION) is ResponseFormat.MULTI_SECTION
        assert detect_format(SINGLE_SHOT) is ResponseFormat.SINGLE_SHOT

    def test_header_fields(self):
        assert self.result.pair_name == "EUR/USD"
        assert self.result.timeframe == "4H"
        assert self.result.trend_direction is Sentiment.BULLISH
        assert self.result.overall_sentiment is Sentiment.MILDLY_BULLISH

    def test_levels_from_inline_lists(self):
        assert [level.price for level in self.result.support_levels] == ["1.0850", "1.0800"]
        assert [level.price for level in self.result.resistance_levels] == ["1.0950"]

    def test_setup_from_separate_labels(self):
        setup = self.result.trading_setup

        assert setup.type is SetupType.LONG
        assert setup.entry == "1.0870"
        assert setup.stop_loss == "1.0820"
        assert setup.targets == ("1.0950", "1.1000")
        assert setup.risk_reward == "1:2.5"

    def test_market_factors_from_keyword_lines(self):
        factors = {factor.description: factor for factor in self.result.market_factors}

        ecb = factors["ECB policy remains supportive and positive for the euro"]
        usd = factors["USD under pressure after weak data"]
        assert ecb.sentiment is Sentiment.BULLISH
        assert ecb.name == "Market Factors"
        assert usd.sentiment is Sentiment.BEARISH

    def test_insight_and_confidence(self):
        assert self.result.trading_insight == "Buyers are in control above 1.0850."
        assert self.result.confidence_score == 80

    def test_default_confidence_for_multi_section(self):
        text = MULTI_SECTION.replace("Confidence: 80%\n", "")

        assert parse_response(text).confidence_score == 85


class TestDegradedInput:
    """Test that parsing is total."""

    @pytest.mark.parametrize("text", [
        "",
        None,
        "The market looks interesting today.",
        "TREND:\nSUPPORT:\nRESISTANCE:",
        ":::\n1.\n**\n#",
        "CONFIDENCE: 250%",
    ])
    def test_never_raises(self, text):
        result = parse_response(text)

        assert 0 <= result.confidence_score <= 100
        assert isinstance(result.market_analysis, str)
        assert result.market_analysis

    def test_unlabeled_text(self):
        result = parse_response("The market looks interesting today.")

        assert result.overall_sentiment is Sentiment.NEUTRAL
        assert result.trend_direction is Sentiment.NEUTRAL
        assert result.price_levels == ()
        assert result.chart_patterns == ()
        assert result.market_factors == ()
        assert result.trading_setup is None
        assert result.market_analysis == "The market looks interesting today."

    def test_empty_text_gets_placeholder_analysis(self):
        result = parse_response("", ParseContext(symbol="EUR/USD", timeframe="1D"))

        assert "EUR/USD" in result.market_analysis
        assert "1D" in result.market_analysis

    def test_confidence_is_clamped(self):
        assert parse_response("CONFIDENCE: 250%").confidence_score == 100

    def test_fractional_confidence(self):
        assert parse_response("Confidence: 0.8").confidence_score == 80

    def test_stated_bias_without_trend(self):
        result = parse_response("Indicators lean toward a bearish bias this week.")

        assert result.overall_sentiment is Sentiment.BEARISH

    def test_pattern_none(self):
        assert parse_response("PATTERN: None identified").chart_patterns == ()

    def test_failing_extractor_costs_only_its_field(self):
        with patch("chart_radar.core.parser.extract_patterns", side_effect=RuntimeError("boom")):
            result = ResponseParser().parse(SINGLE_SHOT)

        assert result.chart_patterns == ()
        assert result.trend_direction is Sentiment.BULLISH
        assert len(result.price_levels) == 3


class TestHelpers:
    """Test the shared extraction helpers."""

    def test_extract_numbers_skips_ordinals_and_percentages(self):
        assert extract_numbers("RSI 45% near 1.0950, next 3,360.50 on the 4H") == ["1.0950", "3,360.50"]

    def test_extract_numbers_limit(self):
        assert extract_numbers("1.1 1.2 1.3", limit=2) == ["1.1", "1.2"]

    def test_classify_sentiment(self):
        assert classify_sentiment("Bullish but bearish divergence") is Sentiment.BULLISH
        assert classify_sentiment("bearish") is Sentiment.BEARISH
        assert classify_sentiment("sideways") is Sentiment.NEUTRAL

    def test_classify_keywords(self):
        assert classify_keywords("positive momentum") is Sentiment.BULLISH
        assert classify_keywords("selling pressure") is Sentiment.BEARISH
        assert classify_keywords("flat") is Sentiment.NEUTRAL


class TestSectionBoundaries:
    """Test where price-level sections start and end."""

    def test_unlabeled_resistance_line_ends_support(self):
        result = parse_response("TREND: bullish\nSUPPORT: 1.0950\nResistance sits at 1.1050")

        assert [(level.price, level.direction) for level in result.price_levels] == [
            ("1.0950", Direction.DOWN),
            ("1.1050", Direction.UP),
        ]

    def test_bare_headings_start_sections(self):
        result = parse_response("SUPPORT\n1.0950\n1.0900\nRESISTANCE\n1.1050")

        assert [level.price for level in result.support_levels] == ["1.0950", "1.0900"]
        assert [level.price for level in result.resistance_levels] == ["1.1050"]
        assert all(level.direction is Direction.UP for level in result.resistance_levels)

    def test_markdown_headings_start_sections(self):
        result = parse_response("## Key Support Levels\n- 3,340.50\n## Resistance\n- 3,390.00")

        assert [level.price for level in result.support_levels] == ["3,340.50"]
        assert [level.price for level in result.resistance_levels] == ["3,390.00"]

    def test_other_section_keyword_ends_levels(self):
        result = parse_response("SUPPORT:\n1. 1.0950\nPattern is a bull flag near 1.0990")

        assert [level.price for level in result.price_levels] == ["1.0950"]


class TestHedging:
    """Test hedged trend wording."""

    @pytest.mark.parametrize("trend,expected", [
        ("weakly bullish", Sentiment.MILDLY_BULLISH),
        ("weak bearish drift", Sentiment.MILDLY_BEARISH),
        ("slightly bullish", Sentiment.MILDLY_BULLISH),
        ("strongly bullish", Sentiment.BULLISH),
    ])
    def test_hedge_words(self, trend, expected):
        result = parse_response(f"TREND: {trend}")

        assert result.overall_sentiment is expected
