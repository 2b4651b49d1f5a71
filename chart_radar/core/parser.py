"""
Provider response parsing.

Turns the provider's free-form analysis text into an AnalysisResult.

The provider output is not a formal grammar, so parsing is a set of
independent extractors, one per field. Each extractor looks for its own
labeled line or section and falls back to a documented default when it
finds nothing, so a change in phrasing degrades one field rather than the
whole result. ``ResponseParser.parse`` never raises.

Two response shapes are recognized:

- single-shot: labeled lines such as ``TREND:``, ``SUPPORT:``, ``PATTERN:``
- multi-section: numbered section headers (``1. CURRENT MARKET DATA:``,
  ``**2. Key Price Levels:**``) with labeled bullets inside
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple, TypeVar

from .pairs import UNKNOWN_PAIR, format_trading_pair
from chart_radar.storage.models import (
    AnalysisResult,
    ChartPattern,
    Direction,
    MarketFactor,
    PriceLevel,
    Sentiment,
    SetupType,
    TradingSetup,
    clamp_confidence,
)
from chart_radar.utils.logger import get_logger

logger = get_logger("core.parser")

T = TypeVar("T")

AUTO_DETECT = "AUTO_DETECT"
UNKNOWN_TIMEFRAME = "Unknown"

MAX_SUPPORT_LEVELS = 3
MAX_RESISTANCE_LEVELS = 3
MAX_MARKET_FACTORS = 8
MAX_TARGETS = 3

DEFAULT_PATTERN_CONFIDENCE = 70
DEFAULT_RISK_REWARD = "1:2"


class ResponseFormat(Enum):
    """Shape of a provider response."""
    SINGLE_SHOT = "single_shot"
    MULTI_SECTION = "multi_section"


# Fallback confidence when the text states none
DEFAULT_CONFIDENCE = {
    ResponseFormat.SINGLE_SHOT: 75,
    ResponseFormat.MULTI_SECTION: 85,
}


@dataclass(frozen=True)
class ParseContext:
    """What the caller asked about. AUTO_DETECT defers to the text."""
    symbol: str = AUTO_DETECT
    timeframe: str = AUTO_DETECT


# Prices: "1.0950", "3,360.00", "150". Not list ordinals, percentages or "4H".
NUMBER = (
    r"(?<![\w.])(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?"
    r"(?![\d%\w]|\.\d)"
)
_NUMBER_RE = re.compile(NUMBER)

_LIST_ORDINAL_RE = re.compile(r"^\s*\d{1,2}[.)]\s+")
_LEADING_MARKUP_RE = re.compile(r"^[\s>#*+\-•]+")
_HEADER_RE = re.compile(r"^(\d{1,2})[.)]\s+([A-Za-z][^\d]*)$")
_LABEL_RE = re.compile(r"^(?P<label>[A-Za-z][A-Za-z0-9 &/'\-]{0,40}?)\s*:\s*(?P<value>.*)$")

LABELS = {
    "trend": r"(?:overall |current |primary |market )?trend(?: direction)?(?: (?:and|&) strength)?",
    "support": r"(?:key |major |critical |immediate )?supports?(?: levels?| zones?)?",
    "resistance": r"(?:key |major |critical |immediate )?resistances?(?: levels?| zones?)?",
    "pattern": r"(?:chart |candlestick |price )?patterns?(?: detected| forming| identified)?",
    "indicators": r"(?:technical )?indicators?(?: signals?| insights?)?",
    "setup": r"(?:trade|trading) (?:setup|plan|recommendation)|setup",
    "entry": r"entry(?: (?:price|point|zone|level|trigger))?",
    "stop": r"stop(?:[ -]?loss)?|sl",
    "target": r"(?:take[ -]?profit|target|tp)s?(?: ?\d)?",
    "confidence": r"confidence(?: score| level)?",
    "sentiment": r"(?:overall |market )?(?:sentiment|bias)",
    "analysis": r"(?:market |technical )?(?:analysis|summary|overview)",
    "pair": r"(?:trading )?pair|symbol|instrument",
    "timeframe": r"time ?frame|interval",
    "insight": r"trader'?s commentary|commentary|trading insights?|insights?",
    "risk_reward": r"risk[ /-]?(?:to[ -])?reward(?: ratio)?|rr",
}
_LABEL_RES = {name: re.compile(pattern) for name, pattern in LABELS.items()}
# Line openers such as "Resistance sits at ..." with no colon
_LEAD_RES = {name: re.compile(r"(?:" + pattern + r")\b") for name, pattern in LABELS.items()}
SECTION_KEYWORDS = (
    "trend", "support", "resistance", "pattern", "indicators",
    "setup", "entry", "stop", "target", "confidence", "sentiment",
)

_KEYWORD_RE = re.compile(r"\b(positive|bullish|negative|bearish|pressure)\b", re.IGNORECASE)
_HEDGE_RE = re.compile(r"\b(mild(?:ly)?|slight(?:ly)?|weak(?:ly)?|modest(?:ly)?|moderate(?:ly)?)\b", re.IGNORECASE)
_BIAS_RE = re.compile(r"\b(?:predominantly (bullish|bearish)|(bullish|bearish) bias)\b", re.IGNORECASE)
_CONFIDENCE_RE = re.compile(r"confidence(?:\s+score|\s+level)?\s*[:=]?\s*(\d{1,3}(?:\.\d+)?)\s*%?", re.IGNORECASE)
_RISK_REWARD_RE = re.compile(
    r"(?:risk[\s/-]*(?:to[\s-]*)?reward(?:\s*ratio)?|\br\s*[:/]\s*r\b|\brr\b)"
    r"\s*[:=]?\s*(?:of\s*)?(?:~\s*|approx(?:imately|\.)?\s*)?"
    r"(\d+(?:\.\d+)?\s*:\s*\d+(?:\.\d+)?)",
    re.IGNORECASE,
)
_TARGET_KEYWORD = r"(?:targets?|take[\s-]*profits?|tp)(?:\s*\d)?"
_TRIPLE_RE = re.compile(
    r"\bentry\b[^0-9]*?(" + NUMBER + r").*?"
    r"\bstop(?:[\s-]*loss)?\b[^0-9]*?(" + NUMBER + r").*?"
    r"\b" + _TARGET_KEYWORD + r"[^0-9]*?(" + NUMBER + r")",
    re.IGNORECASE,
)
_TRIPLE_HEADER_RE = re.compile(
    r"\bentry\s*/\s*stop(?:[\s-]*loss)?\s*/\s*" + _TARGET_KEYWORD + r"\s*:?\s*"
    r"(" + NUMBER + r")\D+?(" + NUMBER + r")\D+?(" + NUMBER + r")",
    re.IGNORECASE,
)
_PAIR_TOKEN_RE = re.compile(r"\b([A-Z]{3,5}/[A-Z]{3,5})\b")
_UNDETECTED_RE = re.compile(r"unable to detect|not visible|unknown|n/a", re.IGNORECASE)


@dataclass(frozen=True)
class _Line:
    text: str                      # markup-free line
    label: Optional[str] = None    # lower-cased label before the colon
    value: str = ""                # text after the colon
    header: Optional[str] = None   # title when the line is a numbered section header

    def is_label(self, name: str) -> bool:
        return self.label is not None and bool(_LABEL_RES[name].fullmatch(self.label))

    @property
    def is_known_label(self) -> bool:
        return self.label is not None and any(r.fullmatch(self.label) for r in _LABEL_RES.values())

    @property
    def bare_title(self) -> str:
        return " ".join(self.text.lower().rstrip(":").split())

    def is_heading(self, name: str) -> bool:
        """A line holding only a section name, e.g. ``RESISTANCE`` or ``## Key Support Levels``."""
        return self.label is None and bool(_LABEL_RES[name].fullmatch(self.bare_title))

    @property
    def is_known_heading(self) -> bool:
        return self.label is None and any(r.fullmatch(self.bare_title) for r in _LABEL_RES.values())

    def opens_with(self, name: str) -> bool:
        return bool(_LEAD_RES[name].match(self.text.lower()))


def _split_lines(raw_text: str) -> List[_Line]:
    lines = []
    for raw in raw_text.splitlines():
        emphasized = "**" in raw or raw.lstrip().startswith("#")
        text = raw.replace("**", "").replace("__", "").replace("`", "")
        text = _LEADING_MARKUP_RE.sub("", text).strip()
        if not text:
            continue

        header = None
        match = _HEADER_RE.match(text)
        if match:
            title = match.group(2).strip()
            if title.endswith(":") or emphasized or title.isupper():
                header = title.rstrip(":").strip()
                text = title

        label, value = None, ""
        label_match = _LABEL_RE.match(text)
        if label_match:
            label = " ".join(label_match.group("label").lower().split())
            value = label_match.group("value").strip()
        lines.append(_Line(text=text, label=label, value=value, header=header))
    return lines


def detect_format(raw_text: str) -> ResponseFormat:
    """Multi-section when the text has at least two numbered section headers."""
    headers = [line for line in _split_lines(raw_text or "") if line.header]
    if len(headers) >= 2:
        return ResponseFormat.MULTI_SECTION
    return ResponseFormat.SINGLE_SHOT


def _find_label(lines: List[_Line], name: str) -> Optional[int]:
    for index, line in enumerate(lines):
        if line.is_label(name):
            return index
    return None


def _find_section(lines: List[_Line], name: str) -> Optional[int]:
    index = _find_label(lines, name)
    if index is not None:
        return index
    for index, line in enumerate(lines):
        if line.is_heading(name):
            return index
    return None


def _section_body(lines: List[_Line], name: str, stop_keywords: Tuple[str, ...] = ()) -> List[str]:
    """Value of the first ``name`` label or bare heading plus continuation lines.

    Continuation stops at the next known label, bare heading or section
    header, and at any line opening with one of ``stop_keywords``.
    """
    index = _find_section(lines, name)
    if index is None:
        return []
    body = [lines[index].value] if lines[index].value else []
    for line in lines[index + 1:]:
        if line.header or line.is_known_label or line.is_known_heading:
            break
        if any(line.opens_with(keyword) for keyword in stop_keywords):
            break
        body.append(line.text)
    return body


def _first_value(lines: List[_Line], name: str) -> Optional[str]:
    """Label value, or the first continuation line when the value is empty."""
    body = _section_body(lines, name)
    return body[0] if body else None


def extract_numbers(text: str, limit: Optional[int] = None) -> List[str]:
    """Numeric tokens in order of appearance, duplicates kept."""
    numbers = [match.group(0) for match in _NUMBER_RE.finditer(text)]
    return numbers[:limit] if limit is not None else numbers


def classify_sentiment(text: str) -> Sentiment:
    """Bullish if "bullish" appears, else bearish if "bearish", else neutral."""
    lowered = text.lower()
    if "bullish" in lowered:
        return Sentiment.BULLISH
    if "bearish" in lowered:
        return Sentiment.BEARISH
    return Sentiment.NEUTRAL


def classify_keywords(text: str) -> Sentiment:
    """Keyword polarity used for market factors."""
    lowered = text.lower()
    if "positive" in lowered or "bullish" in lowered:
        return Sentiment.BULLISH
    if "negative" in lowered or "bearish" in lowered or "pressure" in lowered:
        return Sentiment.BEARISH
    return Sentiment.NEUTRAL


def _hedged(text: str, sentiment: Sentiment) -> Sentiment:
    if not _HEDGE_RE.search(text):
        return sentiment
    if sentiment is Sentiment.BULLISH:
        return Sentiment.MILDLY_BULLISH
    if sentiment is Sentiment.BEARISH:
        return Sentiment.MILDLY_BEARISH
    return sentiment


def extract_trend(lines: List[_Line]) -> Tuple[Sentiment, str]:
    """Trend direction and the trend line text ("" when absent)."""
    text = _first_value(lines, "trend")
    if text is None:
        return Sentiment.NEUTRAL, ""
    return classify_sentiment(text), text


def extract_overall_sentiment(
    lines: List[_Line],
    raw_text: str,
    trend: Sentiment,
    trend_text: str
) -> Sentiment:
    """Explicit sentiment label, else the trend with hedging, else a stated bias."""
    stated = _first_value(lines, "sentiment")
    if stated:
        return _hedged(stated, classify_sentiment(stated))
    if trend_text:
        return _hedged(trend_text, trend)
    bias = _BIAS_RE.search(raw_text)
    if bias:
        return Sentiment((bias.group(1) or bias.group(2)).lower())
    return Sentiment.NEUTRAL


def _level_lines(lines: List[_Line], name: str) -> List[str]:
    """Lines of the ``name`` price section; direction comes from the section alone."""
    others = tuple(keyword for keyword in SECTION_KEYWORDS if keyword != name)
    body = _section_body(lines, name, stop_keywords=others)
    if body or _find_section(lines, name) is not None:
        return body
    # No label or heading: a sentence opening with the keyword
    return [line.text for line in lines if line.label is None and line.opens_with(name)][:1]


def _levels(lines: List[_Line], name: str, prefix: str, direction: Direction, limit: int) -> List[PriceLevel]:
    prices = []
    for text in _level_lines(lines, name):
        prices.extend(extract_numbers(_LIST_ORDINAL_RE.sub("", text)))
        if len(prices) >= limit:
            break
    return [
        PriceLevel(name=f"{prefix} Level {index}", price=price, direction=direction)
        for index, price in enumerate(prices[:limit], start=1)
    ]


def extract_price_levels(lines: List[_Line]) -> List[PriceLevel]:
    """Support levels (down) followed by resistance levels (up)."""
    support = _levels(lines, "support", "Support", Direction.DOWN, MAX_SUPPORT_LEVELS)
    resistance = _levels(lines, "resistance", "Resistance", Direction.UP, MAX_RESISTANCE_LEVELS)
    return support + resistance


def extract_patterns(lines: List[_Line], trend: Sentiment) -> List[ChartPattern]:
    value = _first_value(lines, "pattern")
    if not value or "none" in value.lower():
        return []
    lowered = value.lower()
    status = None
    if "forming" in lowered or "potential" in lowered or "developing" in lowered:
        status = "forming"
    elif "confirmed" in lowered or "completed" in lowered:
        status = "complete"
    return [ChartPattern(
        name=value.rstrip(". "),
        confidence=DEFAULT_PATTERN_CONFIDENCE,
        signal=trend,
        status=status,
    )]


def extract_market_factors(lines: List[_Line], response_format: ResponseFormat) -> List[MarketFactor]:
    """Single-shot: the INDICATORS line. Multi-section: every keyword line."""
    if response_format is ResponseFormat.SINGLE_SHOT:
        body = _section_body(lines, "indicators")
        if not body:
            return []
        description = " ".join(body)
        return [MarketFactor(
            name="Indicators",
            description=description,
            sentiment=classify_keywords(description),
        )]

    factors = []
    section = None
    for line in lines:
        if line.header:
            section = line.header
            continue
        if not _KEYWORD_RE.search(line.text):
            continue
        if line.label and line.value:
            name = line.label.title()
            description = line.value
        else:
            name = section or f"Market Factor {len(factors) + 1}"
            description = line.text
        factors.append(MarketFactor(
            name=name,
            description=description,
            sentiment=classify_keywords(line.text),
        ))
        if len(factors) >= MAX_MARKET_FACTORS:
            break
    return factors


def _setup_type(trend: Sentiment) -> SetupType:
    if trend is Sentiment.BULLISH:
        return SetupType.LONG
    if trend is Sentiment.BEARISH:
        return SetupType.SHORT
    return SetupType.NEUTRAL


def _risk_reward(text: str) -> Optional[str]:
    match = _RISK_REWARD_RE.search(text)
    if not match:
        return None
    return re.sub(r"\s+", "", match.group(1))


def extract_trading_setup(
    lines: List[_Line],
    raw_text: str,
    trend: Sentiment,
    confidence: int
) -> Optional[TradingSetup]:
    """Entry / stop / target triple on one line, or on separate labeled lines."""
    risk_reward = _risk_reward(raw_text) or DEFAULT_RISK_REWARD

    for line in lines:
        text = _RISK_REWARD_RE.sub("", line.text)
        match = _TRIPLE_HEADER_RE.search(text) or _TRIPLE_RE.search(text)
        if not match:
            continue
        entry, stop, first_target = match.group(1), match.group(2), match.group(3)
        targets = [first_target] + extract_numbers(text[match.end():])
        return TradingSetup(
            type=_setup_type(trend),
            description=line.value if line.is_label("setup") and line.value else line.text,
            confidence=confidence,
            entry=entry,
            stop_loss=stop,
            targets=tuple(targets[:MAX_TARGETS]),
            risk_reward=risk_reward,
        )

    entry_value = _first_value(lines, "entry")
    stop_value = _first_value(lines, "stop")
    entry = extract_numbers(entry_value or "", 1)
    stop = extract_numbers(stop_value or "", 1)
    if not entry or not stop:
        return None

    targets = []
    for line in lines:
        if line.is_label("target"):
            targets.extend(extract_numbers(_RISK_REWARD_RE.sub("", line.value), 1))
        if len(targets) >= MAX_TARGETS:
            break
    return TradingSetup(
        type=_setup_type(trend),
        description=(
            f"Entry {entry[0]}, stop {stop[0]}"
            + (f", targets {', '.join(targets[:MAX_TARGETS])}" if targets else "")
        ),
        confidence=confidence,
        entry=entry[0],
        stop_loss=stop[0],
        targets=tuple(targets[:MAX_TARGETS]),
        risk_reward=risk_reward,
    )


def extract_confidence(raw_text: str, response_format: ResponseFormat) -> int:
    match = _CONFIDENCE_RE.search(raw_text)
    if not match:
        return DEFAULT_CONFIDENCE[response_format]
    value = float(match.group(1))
    # "Confidence: 0.8" is a fraction
    if value <= 1 and "." in match.group(1):
        value *= 100
    return clamp_confidence(value)


def _section_text(lines: List[_Line], predicate: Callable[[str], bool]) -> str:
    collecting = False
    body = []
    for line in lines:
        if line.header:
            if collecting:
                break
            collecting = predicate(line.header)
            continue
        if collecting:
            body.append(line.text)
    return " ".join(body)


def extract_market_analysis(
    lines: List[_Line],
    raw_text: str,
    response_format: ResponseFormat,
    pair_name: str,
    timeframe: str
) -> str:
    body = _section_body(lines, "analysis")
    if body:
        return " ".join(body)
    if response_format is ResponseFormat.MULTI_SECTION:
        first = _section_text(lines, lambda title: True)
        if first:
            return first
    stripped = raw_text.strip()
    if stripped:
        return stripped
    return f"No analysis text was returned for {pair_name} on the {timeframe} timeframe."


def extract_trading_insight(lines: List[_Line]) -> str:
    body = _section_body(lines, "insight")
    if body:
        return " ".join(body)
    return _section_text(
        lines,
        lambda title: any(word in title.lower() for word in ("commentary", "insight", "outlook")),
    )


def extract_pair_name(lines: List[_Line], raw_text: str, context: ParseContext) -> str:
    if context.symbol and context.symbol != AUTO_DETECT:
        return format_trading_pair(context.symbol)
    stated = _first_value(lines, "pair")
    if stated and not _UNDETECTED_RE.search(stated):
        return format_trading_pair(stated.split()[0] if " " in stated else stated)
    token = _PAIR_TOKEN_RE.search(raw_text)
    if token:
        return token.group(1)
    return UNKNOWN_PAIR


def extract_timeframe(lines: List[_Line], context: ParseContext) -> str:
    if context.timeframe and context.timeframe != AUTO_DETECT:
        return context.timeframe
    stated = _first_value(lines, "timeframe")
    if stated and not _UNDETECTED_RE.search(stated):
        return stated.split()[0].rstrip(".,")
    return UNKNOWN_TIMEFRAME


class ResponseParser:
    """Composes the extractors into a total parse function."""

    def parse(self, raw_text: Optional[str], context: Optional[ParseContext] = None) -> AnalysisResult:
        """Parse provider text into an AnalysisResult.

        Args:
            raw_text: Provider output; None is treated as empty text
            context: Requested symbol and timeframe

        Returns:
            AnalysisResult with defaults for every field the text lacks
        """
        context = context or ParseContext()
        raw_text = raw_text if isinstance(raw_text, str) else ""

        lines = self._safely("lines", lambda: _split_lines(raw_text), [])
        response_format = self._safely(
            "format", lambda: detect_format(raw_text), ResponseFormat.SINGLE_SHOT
        )

        pair_name = self._safely("pair", lambda: extract_pair_name(lines, raw_text, context), UNKNOWN_PAIR)
        timeframe = self._safely("timeframe", lambda: extract_timeframe(lines, context), UNKNOWN_TIMEFRAME)
        trend, trend_text = self._safely("trend", lambda: extract_trend(lines), (Sentiment.NEUTRAL, ""))
        overall = self._safely(
            "sentiment",
            lambda: extract_overall_sentiment(lines, raw_text, trend, trend_text),
            trend,
        )
        confidence = self._safely(
            "confidence",
            lambda: extract_confidence(raw_text, response_format),
            DEFAULT_CONFIDENCE[response_format],
        )

        return AnalysisResult(
            pair_name=pair_name,
            timeframe=timeframe,
            overall_sentiment=overall,
            confidence_score=confidence,
            market_analysis=self._safely(
                "market_analysis",
                lambda: extract_market_analysis(lines, raw_text, response_format, pair_name, timeframe),
                f"No analysis text was returned for {pair_name} on the {timeframe} timeframe.",
            ),
            trend_direction=trend,
            market_factors=self._safely(
                "market_factors", lambda: extract_market_factors(lines, response_format), []
            ),
            chart_patterns=self._safely("chart_patterns", lambda: extract_patterns(lines, trend), []),
            price_levels=self._safely("price_levels", lambda: extract_price_levels(lines), []),
            trading_setup=self._safely(
                "trading_setup",
                lambda: extract_trading_setup(lines, raw_text, trend, confidence),
                None,
            ),
            trading_insight=self._safely("trading_insight", lambda: extract_trading_insight(lines), ""),
        )

    @staticmethod
    def _safely(field_name: str, extractor: Callable[[], T], default: T) -> T:
        # An extractor bug must only cost its own field
        try:
            return extractor()
        except Exception:
            logger.warning("parser_extractor_failed", field=field_name, exc_info=True)
            return default


def parse_response(raw_text: Optional[str], context: Optional[ParseContext] = None) -> AnalysisResult:
    """Parse with a default ResponseParser."""
    return ResponseParser().parse(raw_text, context)
