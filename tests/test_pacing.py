"""Tests for BatchPacer."""

import pytest

from src.faqsearch.pacing import BatchPacer


class TestBatchPacer:

    def test_starts_at_base_delay(self):
        pacer = BatchPacer(base_delay=0.5)
        assert pacer.current_delay == 0.5

    def test_rate_limit_doubles_delay(self):
        pacer = BatchPacer(base_delay=0.5)
        assert pacer.on_rate_limited() == 1.0
        assert pacer.on_rate_limited() == 2.0
        assert pacer.get_state().total_rate_limits == 2

    def test_rate_limit_from_zero_delay(self):
        pacer = BatchPacer(base_delay=0)
        assert pacer.on_rate_limited() == pytest.approx(0.2)

    def test_delay_capped(self):
        pacer = BatchPacer(base_delay=1.0, max_delay=4.0)
        for _ in range(10):
            pacer.on_rate_limited()
        assert pacer.current_delay == 4.0

    def test_recovery_after_success_streak(self):
        pacer = BatchPacer(base_delay=0.5, recovery_threshold=3)
        pacer.on_rate_limited()
        pacer.on_rate_limited()
        assert pacer.current_delay == 2.0

        pacer.on_success()
        pacer.on_success()
        assert pacer.current_delay == 2.0
        assert pacer.on_success() == 1.0

        state = pacer.get_state()
        assert state.total_recoveries == 1
        assert state.success_streak == 0

    def test_never_below_base(self):
        pacer = BatchPacer(base_delay=0.5, recovery_threshold=1)
        pacer.on_rate_limited()
        for _ in range(5):
            pacer.on_success()
        assert pacer.current_delay == 0.5

    def test_rate_limit_resets_streak(self):
        pacer = BatchPacer(recovery_threshold=3)
        pacer.on_success()
        pacer.on_success()
        pacer.on_rate_limited()
        assert pacer.get_state().success_streak == 0

    def test_error_shortens_streak_only(self):
        pacer = BatchPacer(base_delay=0.5)
        for _ in range(3):
            pacer.on_success()
        assert pacer.on_error() == 0.5
        assert pacer.get_state().success_streak == 1

    @pytest.mark.parametrize(
        "attempt,expected",
        [(1, 1.0), (2, 2.0), (3, 4.0), (10, 60.0)],
    )
    def test_backoff_delay(self, attempt, expected):
        pacer = BatchPacer(base_delay=0.5)
        assert pacer.backoff_delay(attempt) == expected

    def test_backoff_uses_current_delay(self):
        pacer = BatchPacer(base_delay=3.0)
        assert pacer.backoff_delay(2) == 6.0

    def test_reset(self):
        pacer = BatchPacer(base_delay=0.5)
        pacer.on_rate_limited()
        pacer.reset()
        assert pacer.current_delay == 0.5
        assert pacer.get_state().success_streak == 0
