"""
Data models for analysis results.

Defines the canonical AnalysisResult record and its parts. All records are
immutable; list-valued fields are tuples that default to empty.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Sentiment(str, Enum):
    """Market sentiment labels."""
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"
    MILDLY_BULLISH = "mildly bullish"
    MILDLY_BEARISH = "mildly bearish"


class Direction(str, Enum):
    """Where a price level sits relative to the current price."""
    UP = "up"
    DOWN = "down"


class SetupType(str, Enum):
    """Trade direction of a setup."""
    LONG = "long"
    SHORT = "short"
    NEUTRAL = "neutral"


def clamp_confidence(value: Any) -> int:
    """Clamp a confidence value to the 0-100 range."""
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, number))


@dataclass(frozen=True)
class MarketFactor:
    """A fundamental or technical driver and its bias."""
    name: str
    description: str
    sentiment: Sentiment = Sentiment.NEUTRAL


@dataclass(frozen=True)
class ChartPattern:
    """A detected chart formation."""
    name: str
    confidence: int
    signal: Sentiment = Sentiment.NEUTRAL
    status: Optional[str] = None  # e.g. "forming", "complete"

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))


@dataclass(frozen=True)
class PriceLevel:
    """A support or resistance level.

    The price is kept as the exact text the provider wrote so that precision
    and formatting (e.g. "1.0950") survive.
    """
    name: str
    price: str
    direction: Direction


@dataclass(frozen=True)
class TradingSetup:
    """Recommended trade."""
    type: SetupType
    description: str
    confidence: int
    entry: str
    stop_loss: str
    targets: Tuple[str, ...] = ()
    risk_reward: str = "1:2"

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))
        object.__setattr__(self, "targets", tuple(self.targets))


@dataclass(frozen=True)
class AnalysisResult:
    """Structured trading analysis produced by one pipeline run."""
    pair_name: str
    timeframe: str
    overall_sentiment: Sentiment
    confidence_score: int
    market_analysis: str
    trend_direction: Sentiment
    market_factors: Tuple[MarketFactor, ...] = ()
    chart_patterns: Tuple[ChartPattern, ...] = ()
    price_levels: Tuple[PriceLevel, ...] = ()
    trading_setup: Optional[TradingSetup] = None
    trading_insight: str = ""

    def __post_init__(self):
        """Clamp confidence and freeze list fields."""
        object.__setattr__(self, "confidence_score", clamp_confidence(self.confidence_score))
        object.__setattr__(self, "market_factors", tuple(self.market_factors or ()))
        object.__setattr__(self, "chart_patterns", tuple(self.chart_patterns or ()))
        object.__setattr__(self, "price_levels", tuple(self.price_levels or ()))

    @property
    def support_levels(self) -> Tuple[PriceLevel, ...]:
        return tuple(level for level in self.price_levels if level.direction is Direction.DOWN)

    @property
    def resistance_levels(self) -> Tuple[PriceLevel, ...]:
        return tuple(level for level in self.price_levels if level.direction is Direction.UP)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        setup = None
        if self.trading_setup is not None:
            setup = {
                "type": self.trading_setup.type.value,
                "description": self.trading_setup.description,
                "confidence": self.trading_setup.confidence,
                "entry": self.trading_setup.entry,
                "stop_loss": self.trading_setup.stop_loss,
                "targets": list(self.trading_setup.targets),
                "risk_reward": self.trading_setup.risk_reward,
            }
        return {
            "pair_name": self.pair_name,
            "timeframe": self.timeframe,
            "overall_sentiment": self.overall_sentiment.value,
            "confidence_score": self.confidence_score,
            "market_analysis": self.market_analysis,
            "trend_direction": self.trend_direction.value,
            "market_factors": [
                {"name": f.name, "description": f.description, "sentiment": f.sentiment.value}
                for f in self.market_factors
            ],
            "chart_patterns": [
                {"name": p.name, "confidence": p.confidence, "signal": p.signal.value, "status": p.status}
                for p in self.chart_patterns
            ],
            "price_levels": [
                {"name": l.name, "price": l.price, "direction": l.direction.value}
                for l in self.price_levels
            ],
            "trading_setup": setup,
            "trading_insight": self.trading_insight,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        """Rebuild a result from ``to_dict`` output.

        Raises:
            KeyError: If a required field is missing
            ValueError: If an enum value is unknown
        """
        setup_data = data.get("trading_setup")
        setup = None
        if setup_data:
            setup = TradingSetup(
                type=SetupType(setup_data["type"]),
                description=setup_data.get("description", ""),
                confidence=setup_data.get("confidence", 0),
                entry=setup_data["entry"],
                stop_loss=setup_data["stop_loss"],
                targets=tuple(setup_data.get("targets", ())),
                risk_reward=setup_data.get("risk_reward", "1:2"),
            )
        return cls(
            pair_name=data["pair_name"],
            timeframe=data["timeframe"],
            overall_sentiment=Sentiment(data["overall_sentiment"]),
            confidence_score=data["confidence_score"],
            market_analysis=data.get("market_analysis", ""),
            trend_direction=Sentiment(data["trend_direction"]),
            market_factors=tuple(
                MarketFactor(f["name"], f["description"], Sentiment(f["sentiment"]))
                for f in data.get("market_factors", ())
            ),
            chart_patterns=tuple(
                ChartPattern(p["name"], p["confidence"], Sentiment(p["signal"]), p.get("status"))
                for p in data.get("chart_patterns", ())
            ),
            price_levels=tuple(
                PriceLevel(l["name"], l["price"], Direction(l["direction"]))
                for l in data.get("price_levels", ())
            ),
            trading_setup=setup,
            trading_insight=data.get("trading_insight", ""),
        )


@dataclass(frozen=True)
class StoredAnalysis:
    """A persisted analysis with its store-assigned identity."""
    id: int
    subject_id: str
    pair_name: str
    timeframe: str
    created_at: datetime
    result: AnalysisResult = field(compare=False)
