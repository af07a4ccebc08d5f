"""
Circuit breaker, rate limiter, spend guard and controller tests.
"""

import logging
import threading
import time
from datetime import date

import pytest

from conftest import FakeClock, TODAY
from fundmatch.core.exceptions import (
    BudgetExceededError,
    CircuitOpenError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitExceededError,
)
from fundmatch.services.resilience import (
    CircuitBreaker,
    ResilienceController,
    SpendGuard,
    TokenBucketRateLimiter,
)


pytestmark = pytest.mark.unit


def failing_call():
    raise ProviderUnavailableError("503 from provider", status_code=503)


class TestCircuitBreaker:

    def test_opens_after_threshold_and_fails_fast(self, controller):
        for _ in range(3):
            with pytest.raises(ProviderUnavailableError):
                controller.execute(failing_call)

        calls = []
        started = time.monotonic()
        with pytest.raises(CircuitOpenError):
            controller.execute(lambda: calls.append("called"), timeout=5.0)
        elapsed = time.monotonic() - started

        assert controller.circuit_breaker.state == "OPEN"
        assert calls == []
        assert elapsed < 0.5

    def test_half_open_allows_limited_probes(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, open_timeout_seconds=30, half_open_max_requests=1, clock=clock)
        breaker.record_failure()
        assert breaker.state == "OPEN"

        clock.advance(30)

        assert breaker.state == "HALF_OPEN"
        assert breaker.allow_request() is True
        assert breaker.allow_request() is False

    def test_probe_success_closes(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, open_timeout_seconds=30, clock=clock)
        breaker.record_failure()
        clock.advance(31)
        breaker.allow_request()

        breaker.record_success()

        assert breaker.state == "CLOSED"
        assert breaker.stats()["failure_count"] == 0

    def test_probe_failure_reopens(self, clock):
        breaker = CircuitBreaker(failure_threshold=1, open_timeout_seconds=30, clock=clock)
        breaker.record_failure()
        clock.advance(31)
        breaker.allow_request()

        breaker.record_failure()

        assert breaker.state == "OPEN"
        clock.advance(29)
        assert breaker.state == "OPEN"

    def test_late_success_does_not_close_open_circuit(self, clock):
        breaker = CircuitBreaker(failure_threshold=2, open_timeout_seconds=30, clock=clock)
        assert breaker.allow_request() is True
        breaker.record_failure()
        breaker.record_failure()

        breaker.record_success()

        assert breaker.state == "OPEN"
        assert breaker.stats()["failure_count"] == 2
        clock.advance(30)
        assert breaker.state == "HALF_OPEN"

    def test_failures_outside_window_do_not_accumulate(self, clock):
        breaker = CircuitBreaker(failure_threshold=3, failure_window_seconds=60, clock=clock)
        breaker.record_failure()
        breaker.record_failure()

        clock.advance(61)
        breaker.record_failure()

        assert breaker.state == "CLOSED"
        assert breaker.stats()["failure_count"] == 1

    def test_success_resets_failure_count(self, controller):
        for _ in range(2):
            with pytest.raises(ProviderUnavailableError):
                controller.execute(failing_call)

        assert controller.execute(lambda: "ok") == "ok"

        with pytest.raises(ProviderUnavailableError):
            controller.execute(failing_call)
        assert controller.circuit_breaker.state == "CLOSED"

    def test_unexpected_exceptions_count_as_failures(self, controller):
        def broken():
            raise ValueError("bad payload")

        with pytest.raises(ValueError):
            controller.execute(broken)

        assert controller.circuit_breaker.stats()["failure_count"] == 1


class TestRateLimiter:

    def test_bucket_drains_and_refills(self, clock):
        limiter = TokenBucketRateLimiter(rate_per_minute=2, clock=clock)

        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False

        clock.advance(30)

        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False

    def test_refill_never_exceeds_capacity(self, clock):
        limiter = TokenBucketRateLimiter(rate_per_minute=5, clock=clock)
        clock.advance(600)

        assert limiter.available_tokens == 5.0

    def test_local_rate_limit_does_not_trip_circuit(self, clock):
        controller = ResilienceController(
            circuit_breaker=CircuitBreaker(failure_threshold=1, clock=clock),
            rate_limiter=TokenBucketRateLimiter(rate_per_minute=1, clock=clock),
            spend_guard=SpendGuard(daily_budget_krw=1000, today=lambda: TODAY),
            cost_per_1k_input_krw=3.9,
            cost_per_1k_output_krw=19.5,
        )
        try:
            controller.execute(lambda: "first")
            with pytest.raises(RateLimitExceededError):
                controller.execute(lambda: "second")

            assert controller.circuit_breaker.state == "CLOSED"
        finally:
            controller.shutdown()

    def test_provider_429_counts_toward_circuit(self, controller):
        def throttled():
            raise ProviderRateLimitError("429 from provider", status_code=429)

        for _ in range(3):
            with pytest.raises(RateLimitExceededError):
                controller.execute(throttled)

        assert controller.circuit_breaker.state == "OPEN"


class TestSpendGuard:

    def test_alerts_fire_once_per_threshold(self, caplog):
        guard = SpendGuard(daily_budget_krw=100, today=lambda: TODAY)

        with caplog.at_level(logging.INFO, logger="fundmatch.services.resilience"):
            guard.record(50)
            guard.record(10)
            guard.record(20)
            guard.record(15)

        alerts = [r for r in caplog.records if "threshold reached" in r.getMessage()]
        assert [r.levelno for r in alerts] == [logging.INFO, logging.WARNING, logging.CRITICAL]
        assert guard.spent_today == 95
        assert guard.can_spend() is True

    def test_resets_on_new_day(self):
        day = [TODAY]
        guard = SpendGuard(daily_budget_krw=100, today=lambda: day[0])
        guard.record(120)
        assert guard.can_spend() is False

        day[0] = date(2025, 3, 2)

        assert guard.can_spend() is True
        assert guard.spent_today == 0.0

    def test_stats(self):
        guard = SpendGuard(daily_budget_krw=200, today=lambda: TODAY)
        guard.record(50)

        stats = guard.stats()

        assert stats["percentage"] == 25.0
        assert stats["remaining_krw"] == 150.0
        assert stats["date"] == "2025-03-01"


class TestController:

    def test_budget_exhausted_refuses_without_calling(self, controller):
        controller.spend_guard.record(50000)
        calls = []

        with pytest.raises(BudgetExceededError):
            controller.execute(lambda: calls.append("called"))

        assert calls == []
        assert controller.circuit_breaker.state == "CLOSED"

    def test_timeout_counts_as_failure(self, controller):
        release = threading.Event()

        with pytest.raises(ProviderTimeoutError):
            controller.execute(lambda: release.wait(5), timeout=0.05)
        release.set()

        assert controller.circuit_breaker.stats()["failure_count"] == 1

    def test_result_returned_within_timeout(self, controller):
        assert controller.execute(lambda: 42, timeout=5) == 42

    def test_cost_calculation(self, controller):
        assert controller.calculate_cost(1000, 1000) == pytest.approx(23.4)

        cost = controller.record_cost(2000, 500)

        assert cost == pytest.approx(2 * 3.9 + 0.5 * 19.5)
        assert controller.spend_guard.spent_today == pytest.approx(cost)

    def test_health_statuses(self, controller, clock):
        assert controller.health_check()["status"] == "healthy"

        for _ in range(3):
            with pytest.raises(ProviderUnavailableError):
                controller.execute(failing_call)
        assert controller.health_check()["status"] == "unhealthy"

        clock.advance(30)
        assert controller.health_check()["status"] == "degraded"

    def test_budget_warning_degrades_health(self, controller):
        controller.spend_guard.record(41000)

        health = controller.health_check()

        assert health["status"] == "degraded"
        assert health["budget"]["percentage"] == 82.0


def test_fake_clock_only_moves_when_told():
    clock = FakeClock(start=5.0)
    clock.advance(2.5)

    assert clock() == 7.5
