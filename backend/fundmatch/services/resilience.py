"""
Resilience controller shared by all outbound AI calls.

- CircuitBreaker: CLOSED -> OPEN after consecutive provider failures inside a
  sliding window; OPEN -> HALF_OPEN after a cool-down; a HALF_OPEN probe
  success closes the circuit, a probe failure re-opens it.
- TokenBucketRateLimiter: requests-per-minute ceiling, independent of circuit state.
- SpendGuard: cumulative daily cost in KRW with alert thresholds; refuses calls
  once the daily budget is spent.

One controller instance is shared by every explanation request, so all state
changes happen under a lock.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import date
from typing import Any, Callable, Dict, List, Literal, Optional, TypeVar

from fundmatch.core.config import settings
from fundmatch.core.exceptions import (
    BudgetExceededError,
    CircuitOpenError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitExceededError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

CircuitState = Literal["CLOSED", "OPEN", "HALF_OPEN"]
HealthStatus = Literal["healthy", "degraded", "unhealthy"]


# ==================== CIRCUIT BREAKER ====================

class CircuitBreaker:
    """Thread-safe three-state circuit breaker."""

    def __init__(
        self,
        failure_threshold: Optional[int] = None,
        failure_window_seconds: Optional[float] = None,
        open_timeout_seconds: Optional[float] = None,
        half_open_max_requests: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold or settings.CIRCUIT_FAILURE_THRESHOLD
        self.failure_window_seconds = failure_window_seconds or settings.CIRCUIT_FAILURE_WINDOW_SECONDS
        self.open_timeout_seconds = open_timeout_seconds or settings.CIRCUIT_OPEN_TIMEOUT_SECONDS
        self.half_open_max_requests = half_open_max_requests or settings.CIRCUIT_HALF_OPEN_MAX_REQUESTS
        self._clock = clock
        self._lock = threading.Lock()
        self._state: CircuitState = "CLOSED"
        self._failure_count = 0
        self._last_failure_at: Optional[float] = None
        self._opened_at: Optional[float] = None
        self._half_open_in_flight = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    def _refresh(self) -> None:
        # Caller holds the lock
        if self._state == "OPEN" and self._clock() - self._opened_at >= self.open_timeout_seconds:
            self._state = "HALF_OPEN"
            self._half_open_in_flight = 0
            logger.info("Circuit breaker OPEN -> HALF_OPEN, allowing probe requests")

    def allow_request(self) -> bool:
        """Reserve a slot for one call. False means fail fast."""
        with self._lock:
            self._refresh()
            if self._state == "CLOSED":
                return True
            if self._state == "HALF_OPEN" and self._half_open_in_flight < self.half_open_max_requests:
                self._half_open_in_flight += 1
                return True
            return False

    def release(self) -> None:
        """Give back a reserved slot when the call was never attempted."""
        with self._lock:
            if self._state == "HALF_OPEN" and self._half_open_in_flight > 0:
                self._half_open_in_flight -= 1

    def record_success(self) -> None:
        with self._lock:
            # A call admitted before the circuit opened cannot close it
            if self._state == "OPEN":
                return
            if self._state == "HALF_OPEN":
                logger.info("Circuit breaker HALF_OPEN -> CLOSED, provider recovered")
            self._state = "CLOSED"
            self._failure_count = 0
            self._last_failure_at = None
            self._half_open_in_flight = 0

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state == "HALF_OPEN":
                self._state = "OPEN"
                self._opened_at = now
                self._half_open_in_flight = 0
                logger.warning("Circuit breaker HALF_OPEN -> OPEN, probe request failed")
                return

            if self._last_failure_at is not None and now - self._last_failure_at > self.failure_window_seconds:
                self._failure_count = 0
            self._failure_count += 1
            self._last_failure_at = now

            if self._state == "CLOSED" and self._failure_count >= self.failure_threshold:
                self._state = "OPEN"
                self._opened_at = now
                logger.warning(
                    f"Circuit breaker CLOSED -> OPEN after {self._failure_count} consecutive failures; "
                    f"cooling down for {self.open_timeout_seconds:.0f}s"
                )

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            self._refresh()
            return {
                "state": self._state,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "half_open_in_flight": self._half_open_in_flight,
            }


# ==================== RATE LIMITER ====================

class TokenBucketRateLimiter:
    """Token bucket with capacity = requests per minute and continuous refill."""

    def __init__(self, rate_per_minute: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self.rate_per_minute = rate_per_minute or settings.AI_RATE_LIMIT_PER_MINUTE
        self.capacity = float(self.rate_per_minute)
        self._refill_per_second = self.rate_per_minute / 60.0
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = self.capacity
        self._updated_at = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self.capacity, self._tokens + elapsed * self._refill_per_second)
        self._updated_at = now

    def try_acquire(self) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            logger.warning(f"Rate limit reached ({self.rate_per_minute} requests/minute)")
            return False

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens


# ==================== SPEND GUARD ====================

# Percent of daily budget -> log level
BUDGET_ALERT_THRESHOLDS = (
    (95, logging.CRITICAL),
    (80, logging.WARNING),
    (50, logging.INFO),
)


class SpendGuard:
    """Daily spend ceiling in KRW. Resets when the date changes."""

    def __init__(self, daily_budget_krw: Optional[float] = None, today: Callable[[], date] = date.today):
        self.daily_budget_krw = daily_budget_krw or settings.AI_DAILY_BUDGET_KRW
        self._today = today
        self._lock = threading.Lock()
        self._day = today()
        self._spent = 0.0
        self._alerts_sent: List[int] = []

    def _roll_day(self) -> None:
        today = self._today()
        if today != self._day:
            logger.info(f"Daily AI spend reset (previous day {self._day}: ₩{self._spent:,.0f})")
            self._day = today
            self._spent = 0.0
            self._alerts_sent = []

    def can_spend(self) -> bool:
        with self._lock:
            self._roll_day()
            return self._spent < self.daily_budget_krw

    def record(self, cost_krw: float) -> None:
        with self._lock:
            self._roll_day()
            self._spent += cost_krw
            percent = self._spent / self.daily_budget_krw * 100
            for threshold, level in BUDGET_ALERT_THRESHOLDS:
                if percent >= threshold:
                    if threshold not in self._alerts_sent:
                        self._alerts_sent.append(threshold)
                        logger.log(
                            level,
                            f"AI budget {threshold}% threshold reached: "
                            f"₩{self._spent:,.0f} / ₩{self.daily_budget_krw:,.0f} ({percent:.1f}%)",
                        )
                    break

    @property
    def spent_today(self) -> float:
        with self._lock:
            self._roll_day()
            return self._spent

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            self._roll_day()
            return {
                "date": self._day.isoformat(),
                "spent_krw": round(self._spent, 2),
                "budget_krw": self.daily_budget_krw,
                "remaining_krw": round(max(0.0, self.daily_budget_krw - self._spent), 2),
                "percentage": round(self._spent / self.daily_budget_krw * 100, 2),
            }


# ==================== CONTROLLER ====================

class ResilienceController:
    """
    Gate for every provider call: circuit breaker, rate limiter, spend guard,
    and an overall timeout.
    """

    def __init__(
        self,
        circuit_breaker: Optional[CircuitBreaker] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        spend_guard: Optional[SpendGuard] = None,
        cost_per_1k_input_krw: Optional[float] = None,
        cost_per_1k_output_krw: Optional[float] = None,
        max_workers: int = 8,
    ):
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter()
        self.spend_guard = spend_guard or SpendGuard()
        self.cost_per_1k_input_krw = (
            cost_per_1k_input_krw if cost_per_1k_input_krw is not None else settings.ai_cost_per_1k_input_krw
        )
        self.cost_per_1k_output_krw = (
            cost_per_1k_output_krw if cost_per_1k_output_krw is not None else settings.ai_cost_per_1k_output_krw
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ai-call")

    def execute(self, call: Callable[[], T], timeout: Optional[float] = None) -> T:
        """
        Run a provider call through every guard.

        Raises:
            CircuitOpenError: circuit OPEN (no call attempted)
            RateLimitExceededError: token bucket empty (no call attempted)
            BudgetExceededError: daily budget spent (no call attempted)
            ProviderTimeoutError: call exceeded timeout (counted as a failure)
            ProviderError: whatever the call raised
        """
        if not self.circuit_breaker.allow_request():
            raise CircuitOpenError("Circuit breaker is OPEN - AI service temporarily unavailable")

        if not self.rate_limiter.try_acquire():
            self.circuit_breaker.release()
            raise RateLimitExceededError("Rate limit exceeded - please retry shortly")

        if not self.spend_guard.can_spend():
            self.circuit_breaker.release()
            logger.warning("Daily AI budget exhausted, refusing provider call")
            raise BudgetExceededError("Daily budget exceeded - AI service paused until tomorrow")

        try:
            if timeout is None:
                result = call()
            else:
                future = self._executor.submit(call)
                try:
                    result = future.result(timeout=timeout)
                except FutureTimeoutError:
                    # The worker keeps running; its outcome is ignored
                    future.cancel()
                    raise ProviderTimeoutError(f"AI provider call exceeded {timeout:.1f}s timeout")
        except ProviderError as e:
            if e.counts_toward_circuit:
                self.circuit_breaker.record_failure()
            else:
                self.circuit_breaker.release()
            raise
        except Exception:
            self.circuit_breaker.record_failure()
            raise

        self.circuit_breaker.record_success()
        return result

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Cost of one call in KRW."""
        return (
            input_tokens / 1000 * self.cost_per_1k_input_krw
            + output_tokens / 1000 * self.cost_per_1k_output_krw
        )

    def record_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Charge a completed call to today's budget. Returns the cost in KRW."""
        cost = self.calculate_cost(input_tokens, output_tokens)
        self.spend_guard.record(cost)
        return cost

    def health_check(self) -> Dict[str, Any]:
        """
        Overall status.

        unhealthy: circuit OPEN or budget exhausted
        degraded: circuit HALF_OPEN, budget >= 80%, or rate limiter nearly empty
        healthy: otherwise
        """
        circuit = self.circuit_breaker.stats()
        budget = self.spend_guard.stats()
        tokens = self.rate_limiter.available_tokens

        status: HealthStatus = "healthy"
        if circuit["state"] == "OPEN" or budget["percentage"] >= 100:
            status = "unhealthy"
        elif (
            circuit["state"] == "HALF_OPEN"
            or budget["percentage"] >= 80
            or tokens < self.rate_limiter.capacity * 0.1
        ):
            status = "degraded"

        return {
            "status": status,
            "circuit": circuit,
            "budget": budget,
            "rate_limit": {
                "available": round(tokens, 2),
                "per_minute": self.rate_limiter.rate_per_minute,
            },
        }

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
