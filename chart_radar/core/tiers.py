"""
Subscription tiers and quota limits.

Fixed lookup tables mapping (analysis kind, tier) to daily and monthly
allowances.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class Tier(Enum):
    """Subscription levels."""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Tier":
        """Parse a stored tier name, falling back to FREE for unknown values."""
        if not value:
            return cls.FREE
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.FREE


class AnalysisKind(Enum):
    """Metered analysis products, each with its own counters."""
    BASIC = "basic"  # Chart screenshot or pair analysis
    DEEP = "deep"    # Deep historical analysis


@dataclass(frozen=True)
class TierLimits:
    """Allowance for one tier."""
    daily_limit: int
    monthly_limit: int

    def __post_init__(self):
        """Validate limits are positive."""
        if self.daily_limit <= 0:
            raise ValueError("daily_limit must be > 0")
        if self.monthly_limit <= 0:
            raise ValueError("monthly_limit must be > 0")


@dataclass(frozen=True)
class LimitsTable:
    """Limits for every (kind, tier) pair."""
    limits: Dict[AnalysisKind, Dict[Tier, TierLimits]]

    def get_limits(self, tier: Tier, kind: AnalysisKind = AnalysisKind.BASIC) -> TierLimits:
        """Get limits for a tier.

        Args:
            tier: Subscription tier
            kind: Analysis product

        Returns:
            TierLimits for the pair

        Raises:
            ValueError: If the table has no entry for the pair
        """
        per_tier = self.limits.get(kind, {})
        if tier not in per_tier:
            raise ValueError(f"No limits configured for {kind.value}/{tier.value}")
        return per_tier[tier]

    def with_overrides(
        self,
        overrides: Dict[AnalysisKind, Dict[Tier, TierLimits]]
    ) -> "LimitsTable":
        """Return a copy with individual entries replaced."""
        merged = {kind: dict(per_tier) for kind, per_tier in self.limits.items()}
        for kind, per_tier in overrides.items():
            merged.setdefault(kind, {}).update(per_tier)
        return LimitsTable(merged)


DEFAULT_LIMITS = LimitsTable({
    AnalysisKind.DEEP: {
        Tier.FREE: TierLimits(daily_limit=1, monthly_limit=30),
        Tier.STARTER: TierLimits(daily_limit=5, monthly_limit=150),
        Tier.PRO: TierLimits(daily_limit=15, monthly_limit=450),
    },
    AnalysisKind.BASIC: {
        Tier.FREE: TierLimits(daily_limit=3, monthly_limit=90),
        Tier.STARTER: TierLimits(daily_limit=15, monthly_limit=450),
        Tier.PRO: TierLimits(daily_limit=30, monthly_limit=900),
    },
})


def tier_limits(tier: Tier, kind: AnalysisKind = AnalysisKind.BASIC) -> TierLimits:
    """Look up the default limits for a tier."""
    return DEFAULT_LIMITS.get_limits(tier, kind)
