"""
Tiered, time-windowed usage quotas.

Every decision takes its time from the server-side ClockSource. Reads never
write; ``reserve`` is the only mutation and is a single store transaction.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .clock import ClockSource, SystemClock, WindowKind, window_end, window_start
from .errors import ChartRadarError, FailureReason
from .tiers import DEFAULT_LIMITS, AnalysisKind, LimitsTable, Tier, TierLimits
from chart_radar.storage.repository import CounterSnapshot, UsageCounterRepository
from chart_radar.utils.logger import get_logger

logger = get_logger("core.quota")


@dataclass(frozen=True)
class UsageWindow:
    """Counter state for one accounting window."""
    kind: WindowKind
    count: int
    limit: int
    reset_at: datetime

    def __post_init__(self):
        """Validate counter values."""
        if self.count < 0:
            raise ValueError("count cannot be negative")
        if self.limit <= 0:
            raise ValueError("limit must be > 0")

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def exhausted(self) -> bool:
        return self.count >= self.limit


@dataclass(frozen=True)
class UsageState:
    """Both windows for a subject plus the tier that set their limits."""
    subject_id: str
    tier: Tier
    kind: AnalysisKind
    daily: UsageWindow
    monthly: UsageWindow

    @property
    def can_proceed(self) -> bool:
        return self.daily.count < self.daily.limit and self.monthly.count < self.monthly.limit

    @property
    def daily_remaining(self) -> int:
        return self.daily.remaining

    @property
    def monthly_remaining(self) -> int:
        return self.monthly.remaining

    @property
    def exhausted_window(self) -> Optional[WindowKind]:
        """The window blocking further use; daily wins when both are exhausted."""
        if self.daily.exhausted:
            return WindowKind.DAILY
        if self.monthly.exhausted:
            return WindowKind.MONTHLY
        return None


class QuotaExceeded(ChartRadarError):
    """Raised when a reservation is rejected."""
    reason = FailureReason.QUOTA_EXCEEDED

    def __init__(self, window: WindowKind, state: UsageState):
        exhausted = state.daily if window is WindowKind.DAILY else state.monthly
        super().__init__(
            f"{window.value.capitalize()} {state.kind.value} analysis limit reached for "
            f"{state.subject_id} ({exhausted.count}/{exhausted.limit} on the "
            f"{state.tier.value} tier). Resets at {exhausted.reset_at.isoformat()}"
        )
        self.window = window
        self.state = state


class QuotaManager:
    """Computes remaining allowance and reserves usage atomically."""

    def __init__(
        self,
        repository: UsageCounterRepository,
        clock: Optional[ClockSource] = None,
        limits: LimitsTable = DEFAULT_LIMITS
    ):
        self.repository = repository
        self.clock = clock or SystemClock()
        self.limits = limits

    def tier_of(self, subject_id: str) -> Tier:
        return Tier.parse(self.repository.get_tier(subject_id))

    def tier_limits(self, tier: Tier, kind: AnalysisKind = AnalysisKind.BASIC) -> TierLimits:
        return self.limits.get_limits(tier, kind)

    def check_limits(self, subject_id: str, kind: AnalysisKind = AnalysisKind.BASIC) -> UsageState:
        """Read the current usage for a subject.

        Windows whose reset instant has passed read as empty windows with the
        next reset instant. Nothing is written, so repeated calls are
        idempotent.

        Args:
            subject_id: Subject to check
            kind: Analysis product

        Returns:
            Current UsageState
        """
        now = self.clock.now()
        tier = self.tier_of(subject_id)
        limits = self.tier_limits(tier, kind)
        daily_start = window_start(now, WindowKind.DAILY)
        monthly_start = window_start(now, WindowKind.MONTHLY)

        counts = self.repository.read_counts(subject_id, kind.value, daily_start, monthly_start)
        return self._build_state(subject_id, tier, kind, limits, now, counts)

    def reserve(self, subject_id: str, kind: AnalysisKind = AnalysisKind.BASIC) -> UsageState:
        """Atomically check both windows and take one unit from each.

        Args:
            subject_id: Subject to charge
            kind: Analysis product

        Returns:
            UsageState after the increment

        Raises:
            QuotaExceeded: If either window has no remaining allowance
        """
        now = self.clock.now()
        tier = self.tier_of(subject_id)
        limits = self.tier_limits(tier, kind)
        daily_start = window_start(now, WindowKind.DAILY)
        monthly_start = window_start(now, WindowKind.MONTHLY)

        reserved, counts = self.repository.increment_if_below(
            subject_id,
            kind.value,
            daily_start,
            limits.daily_limit,
            monthly_start,
            limits.monthly_limit
        )
        state = self._build_state(subject_id, tier, kind, limits, now, counts)

        if not reserved:
            window = state.exhausted_window or WindowKind.DAILY
            logger.info(
                "quota_rejected",
                subject_id=subject_id,
                kind=kind.value,
                tier=tier.value,
                window=window.value,
                daily=f"{state.daily.count}/{state.daily.limit}",
                monthly=f"{state.monthly.count}/{state.monthly.limit}",
            )
            raise QuotaExceeded(window, state)

        logger.info(
            "quota_reserved",
            subject_id=subject_id,
            kind=kind.value,
            tier=tier.value,
            daily=f"{state.daily.count}/{state.daily.limit}",
            monthly=f"{state.monthly.count}/{state.monthly.limit}",
        )
        return state

    @staticmethod
    def _build_state(
        subject_id: str,
        tier: Tier,
        kind: AnalysisKind,
        limits: TierLimits,
        now: datetime,
        counts: CounterSnapshot
    ) -> UsageState:
        return UsageState(
            subject_id=subject_id,
            tier=tier,
            kind=kind,
            daily=UsageWindow(
                kind=WindowKind.DAILY,
                count=counts.daily_count,
                limit=limits.daily_limit,
                reset_at=window_end(now, WindowKind.DAILY)
            ),
            monthly=UsageWindow(
                kind=WindowKind.MONTHLY,
                count=counts.monthly_count,
                limit=limits.monthly_limit,
                reset_at=window_end(now, WindowKind.MONTHLY)
            ),
        )
