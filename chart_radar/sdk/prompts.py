"""
Instruction templates sent to the analysis provider.

The single-shot chart template asks for labeled lines; the detailed chart and
pair templates ask for numbered sections. The parser understands both.
"""

from datetime import datetime
from typing import Optional

from chart_radar.core.parser import AUTO_DETECT

SYSTEM_PROMPT = (
    "You are a professional forex analyst and full-time trader. "
    "Base every statement on what is visible in the chart or in current market data. "
    "If something cannot be determined, write \"Not visible\" instead of inventing it."
)

CHART_PROMPT = """Analyze this {pair_instruction} {timeframe_instruction}.

Answer using exactly these labeled lines:

TRADING PAIR: {pair_line}
TIMEFRAME: {timeframe_line}
TREND: <bullish, bearish or sideways, with a few words on strength>
SUPPORT:
1. <price>
2. <price>
3. <price>
RESISTANCE:
1. <price>
2. <price>
3. <price>
PATTERN: <the most significant chart or candlestick pattern, or "None">
INDICATORS: <what any visible indicators suggest>
TRADE SETUP: Entry <price> / Stop <price> / Target <price>
RISK/REWARD: <ratio such as 1:2>
CONFIDENCE: <0-100>
ANALYSIS: <five to eight sentences of overall analysis>"""

DETAILED_CHART_PROMPT = """Analyze the attached {pair_instruction} {timeframe_instruction}.
The chart was captured at {captured_at}.

Answer in these numbered sections, using markdown:

**CHART IDENTIFICATION:**
- Trading Pair: {pair_line}
- Timeframe: {timeframe_line}

**1. Market Context & Trend Detection:**
- Trend: <bullish/bearish/sideways and higher time-frame context>

**2. Key Price Levels:**
- Support: <prices, strongest first>
- Resistance: <prices, strongest first>

**3. Notable Chart/Candlestick Patterns:**
- Pattern: <main pattern and where it occurs, or "None">

**4. Price Action & Momentum Analysis:**
- <impulses, corrections, rejection wicks, volume if visible>

**5. Indicator Insights (If Visible):**
- <what visible indicators suggest>

**6. Trade Opportunity & Setup Suggestion:**
- Entry: <price>
- Stop Loss: <price>
- Take Profit 1: <price>
- Take Profit 2: <price>
- Risk/Reward: <ratio>

**7. Trader's Commentary:**
- <two practical observations and a risk warning about leverage>"""

PAIR_PROMPT = """Provide a comprehensive forex analysis for {pair_name} on the {timeframe} timeframe using the most current market data.

1. CURRENT MARKET DATA:
- Current price and recent price action
- 24h high/low and percentage change
- Sentiment: <current market sentiment>

2. TECHNICAL ANALYSIS:
- Trend: <direction and strength>
- Support: <specific prices>
- Resistance: <specific prices>
- Pattern: <chart patterns currently forming, or "None">
- Indicators: <RSI, MACD, moving averages>

3. FUNDAMENTAL ANALYSIS:
- Economic news, upcoming releases, central bank policy and geopolitical factors,
  each stated as positive, negative or neutral for the pair

4. TRADING INSIGHTS:
- Entry: <price>
- Stop Loss: <price>
- Target: <price>
- Risk/Reward: <ratio>

5. MARKET OUTLOOK:
- Short-term (24-48 hours) and medium-term (next week) outlook and key events"""


def _pair_parts(pair_name: Optional[str]):
    if not pair_name or pair_name == AUTO_DETECT:
        return (
            "chart. First identify the trading pair from the chart title or legend",
            "<identify from chart, or \"Unable to detect from chart image\">",
        )
    return f"{pair_name} chart", pair_name


def _timeframe_parts(timeframe: Optional[str]):
    if not timeframe or timeframe == AUTO_DETECT:
        return (
            "and identify the timeframe from the chart (1H, 4H, 1D, ...)",
            "<identify from chart, or \"Unable to detect from chart image\">",
        )
    return f"on the {timeframe} timeframe", timeframe


def build_chart_prompt(
    pair_name: Optional[str],
    timeframe: Optional[str],
    detailed: bool = False,
    captured_at: Optional[datetime] = None
) -> str:
    """Instruction for a chart image, auto-detecting pair/timeframe when asked."""
    pair_instruction, pair_line = _pair_parts(pair_name)
    timeframe_instruction, timeframe_line = _timeframe_parts(timeframe)
    template = DETAILED_CHART_PROMPT if detailed else CHART_PROMPT
    return template.format(
        pair_instruction=pair_instruction,
        timeframe_instruction=timeframe_instruction,
        pair_line=pair_line,
        timeframe_line=timeframe_line,
        captured_at=captured_at.isoformat() if captured_at else "an unknown time",
    )


def build_pair_prompt(pair_name: str, timeframe: str) -> str:
    """Instruction for a symbol-only, real-time data analysis."""
    return PAIR_PROMPT.format(pair_name=pair_name, timeframe=timeframe)
