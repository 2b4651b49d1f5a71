"""
Unit tests for quota accounting.

Tests window limits, rollover, idempotent reads and concurrent reservation.
"""

import os
import shutil
import tempfile
import threading
from datetime import datetime, timedelta, timezone

import pytest

from chart_radar.core.clock import FixedClock, WindowKind
from chart_radar.core.errors import FailureReason
from chart_radar.core.quota import QuotaExceeded, QuotaManager
from chart_radar.core.tiers import AnalysisKind, Tier, TierLimits
from chart_radar.storage.repository import UsageCounterRepository, initialize_schema

UTC = timezone.utc


class TestQuotaManager:
    """Test check_limits and reserve against a real SQLite store."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repository = UsageCounterRepository(self.db_path)
        self.clock = FixedClock(datetime(2024, 3, 15, 10, 0, tzinfo=UTC))
        self.manager = QuotaManager(self.repository, clock=self.clock)

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_new_subject_starts_empty_on_free_tier(self):
        state = self.manager.check_limits("alice")

        assert state.tier is Tier.FREE
        assert state.daily.count == 0
        assert state.monthly.count == 0
        assert state.daily.limit == 3
        assert state.monthly.limit == 90
        assert state.can_proceed
        assert state.daily.reset_at == datetime(2024, 3, 16, tzinfo=UTC)
        assert state.monthly.reset_at == datetime(2024, 4, 1, tzinfo=UTC)

    def test_reserve_increments_both_windows(self):
        state = self.manager.reserve("alice")

        assert state.daily.count == 1
        assert state.monthly.count == 1
        assert state.daily_remaining == 2
        assert state.monthly_remaining == 89

    def test_check_limits_is_idempotent(self):
        self.manager.reserve("alice")

        first = self.manager.check_limits("alice")
        second = self.manager.check_limits("alice")

        assert first == second
        assert first.daily.count == 1

    def test_daily_limit_rejects_with_pre_reservation_state(self):
        for _ in range(3):
            self.manager.reserve("alice")

        with pytest.raises(QuotaExceeded) as exc_info:
            self.manager.reserve("alice")

        error = exc_info.value
        assert error.window is WindowKind.DAILY
        assert error.reason is FailureReason.QUOTA_EXCEEDED
        assert error.state.daily.count == 3
        assert error.state.daily_remaining == 0
        assert not error.state.can_proceed
        assert self.manager.check_limits("alice").daily.count == 3

    def test_daily_wins_when_both_windows_exhausted(self):
        self.repository.set_tier("bob", "free")
        manager = QuotaManager(
            self.repository,
            clock=self.clock,
            limits=self.manager.limits.with_overrides({
                AnalysisKind.BASIC: {Tier.FREE: TierLimits(daily_limit=2, monthly_limit=2)}
            })
        )
        manager.reserve("bob")
        manager.reserve("bob")

        with pytest.raises(QuotaExceeded) as exc_info:
            manager.reserve("bob")

        assert exc_info.value.window is WindowKind.DAILY

    def test_monthly_limit_rejects_on_a_fresh_day(self):
        manager = QuotaManager(
            self.repository,
            clock=self.clock,
            limits=self.manager.limits.with_overrides({
                AnalysisKind.BASIC: {Tier.FREE: TierLimits(daily_limit=3, monthly_limit=4)}
            })
        )
        for _ in range(3):
            manager.reserve("carol")
        self.clock.advance(timedelta(days=1))
        manager.reserve("carol")

        with pytest.raises(QuotaExceeded) as exc_info:
            manager.reserve("carol")

        assert exc_info.value.window is WindowKind.MONTHLY
        assert exc_info.value.state.daily.count == 1

    def test_daily_window_rolls_over_at_reset_instant(self):
        for _ in range(3):
            self.manager.reserve("alice")
        reset_at = self.manager.check_limits("alice").daily.reset_at

        self.clock.set(reset_at)
        state = self.manager.check_limits("alice")

        assert state.daily.count == 0
        assert state.daily.reset_at > reset_at
        assert state.monthly.count == 3
        assert state.can_proceed

    def test_monthly_window_rolls_over(self):
        self.clock.set(datetime(2024, 3, 31, 23, 59, tzinfo=UTC))
        self.manager.reserve("alice")

        self.clock.set(datetime(2024, 4, 1, tzinfo=UTC))
        state = self.manager.check_limits("alice")

        assert state.daily.count == 0
        assert state.monthly.count == 0
        assert state.monthly.reset_at == datetime(2024, 5, 1, tzinfo=UTC)

    def test_tier_controls_limits(self):
        self.repository.set_tier("dave", "pro")

        state = self.manager.check_limits("dave")

        assert state.tier is Tier.PRO
        assert state.daily.limit == 30
        assert state.monthly.limit == 900

    def test_kinds_have_separate_counters(self):
        self.manager.reserve("alice", AnalysisKind.DEEP)

        with pytest.raises(QuotaExceeded):
            self.manager.reserve("alice", AnalysisKind.DEEP)

        basic = self.manager.check_limits("alice", AnalysisKind.BASIC)
        assert basic.daily.count == 0
        assert basic.can_proceed

    def test_subjects_are_independent(self):
        for _ in range(3):
            self.manager.reserve("alice")

        assert self.manager.check_limits("erin").daily.count == 0
        self.manager.reserve("erin")

    @pytest.mark.parametrize("tier", list(Tier))
    def test_concurrent_reserve_never_exceeds_daily_limit(self, tier):
        """N threads racing for the same subject take exactly daily_limit slots."""
        subject = f"racer-{tier.value}"
        self.repository.set_tier(subject, tier.value)
        limit = self.manager.tier_limits(tier).daily_limit
        attempts = limit + 8

        barrier = threading.Barrier(attempts)
        successes = []
        rejections = []
        lock = threading.Lock()

        def worker():
            # Each thread gets its own connection through the repository
            manager = QuotaManager(UsageCounterRepository(self.db_path), clock=self.clock)
            barrier.wait()
            try:
                manager.reserve(subject)
                outcome = successes
            except QuotaExceeded:
                outcome = rejections
            with lock:
                outcome.append(1)

        threads = [threading.Thread(target=worker) for _ in range(attempts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(successes) == limit
        assert len(rejections) == attempts - limit
        assert self.manager.check_limits(subject).daily.count == limit

    def test_concurrent_reserve_never_exceeds_monthly_limit(self):
        """Daily room left but one monthly slot: exactly one racer wins."""
        subject = "month-end"
        month_start = datetime(2024, 3, 1, tzinfo=UTC)
        monthly_limit = self.manager.tier_limits(Tier.FREE).monthly_limit
        for used in range(monthly_limit - 1):
            earlier_day = month_start + timedelta(days=used % 14)
            self.repository.increment_if_below(
                subject, AnalysisKind.BASIC.value, earlier_day, 100, month_start, 100
            )

        state = self.manager.check_limits(subject)
        assert state.daily.count == 0
        assert state.monthly.count == monthly_limit - 1

        attempts = 10
        barrier = threading.Barrier(attempts)
        successes = []
        rejected_windows = []
        lock = threading.Lock()

        def worker():
            manager = QuotaManager(UsageCounterRepository(self.db_path), clock=self.clock)
            barrier.wait()
            try:
                manager.reserve(subject)
                with lock:
                    successes.append(1)
            except QuotaExceeded as e:
                with lock:
                    rejected_windows.append(e.window)

        threads = [threading.Thread(target=worker) for _ in range(attempts)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(successes) == 1
        assert rejected_windows == [WindowKind.MONTHLY] * (attempts - 1)
        state = self.manager.check_limits(subject)
        assert state.monthly.count == monthly_limit
        assert state.daily.count == 1
