"""
Match Explanation Service.

Turns a MatchScore into a Korean narrative:
- cache lookup keyed by (organization, program, program status)
- one provider call per key at a time (concurrent callers share the result)
- generation through the ResilienceController with an overall timeout
- state-consistency check on the generated text (logged, never blocking)
- templated fallback on any failure; fallbacks are never cached
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from fundmatch.core.config import settings
from fundmatch.core.exceptions import FailureReason, ProviderError
from fundmatch.core.types import (
    Explanation,
    MatchScore,
    OrganizationSummary,
    ProgramStatus,
    ProgramSummary,
)
from fundmatch.services.ai_client import AIProviderClient, ProviderResponse, TextGenerator
from fundmatch.services.explanation_cache import (
    CACHE_KEY_PREFIX,
    CacheBackend,
    build_cache,
    explanation_cache_key,
)
from fundmatch.services.explanation_prompts import (
    build_system_prompt,
    build_user_prompt,
    parse_explanation_response,
)
from fundmatch.services.fallback_content import build_fallback_explanation, get_error_message
from fundmatch.services.resilience import ResilienceController
from fundmatch.services.state_consistency import detect_state_inconsistencies, log_state_inconsistencies

logger = logging.getLogger(__name__)

# Fields stored in the cache; runtime fields (cached, cost, timing) are set per response
CACHED_FIELDS = ("summary", "reasons", "cautions", "recommendation", "program_status", "consistency_violations")


@dataclass
class ExplanationRequest:
    """One item of a batch."""
    organization: OrganizationSummary
    program: ProgramSummary
    match: MatchScore
    program_status: Optional[ProgramStatus] = None


class _InFlight:
    """A generation in progress that other callers for the same key wait on."""

    def __init__(self):
        self.done = threading.Event()
        self.result: Optional[Explanation] = None


class ExplanationService:
    """Service for generating, caching and falling back on match explanations."""

    def __init__(
        self,
        provider: TextGenerator,
        controller: ResilienceController,
        cache: CacheBackend,
        ttl_seconds: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        batch_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
    ):
        self.provider = provider
        self.controller = controller
        self.cache = cache
        self.ttl_seconds = ttl_seconds or settings.EXPLANATION_CACHE_TTL_SECONDS
        self.timeout_seconds = timeout_seconds or settings.EXPLANATION_TIMEOUT_SECONDS
        self.batch_delay_seconds = (
            batch_delay_seconds if batch_delay_seconds is not None else settings.EXPLANATION_BATCH_DELAY_SECONDS
        )
        self._sleep = sleep
        self._clock = clock
        self._today = today
        self._inflight: Dict[str, _InFlight] = {}
        self._inflight_lock = threading.Lock()

    # ==================== EXPLAIN ====================

    def explain(
        self,
        organization: OrganizationSummary,
        program: ProgramSummary,
        match: MatchScore,
        program_status: Optional[ProgramStatus] = None,
    ) -> Explanation:
        """
        Explanation for one match. Never raises for provider problems.

        Args:
            organization: Organization summary
            program: Program summary
            match: Score to explain
            program_status: Lifecycle status; defaults to program.status

        Returns:
            Explanation with cached/cost reflecting the path taken
        """
        status = program_status or program.status
        key = explanation_cache_key(organization.id, program.id, status)
        started = self._clock()

        cached = self._cache_get(key)
        if cached is not None:
            return self._from_cache(cached, status, started)

        with self._inflight_lock:
            flight = self._inflight.get(key)
            is_leader = flight is None
            if is_leader:
                flight = _InFlight()
                self._inflight[key] = flight

        if not is_leader:
            logger.debug(f"Waiting on in-flight explanation for {key}")
            # Leader is bounded by the controller timeout plus its fallback path
            if flight.done.wait(timeout=self.timeout_seconds + 5) and flight.result is not None:
                return flight.result
            return self._fallback(organization, program, match, status, "timeout", started)

        try:
            # A previous leader may have filled the cache since our miss
            cached = self._cache_get(key)
            if cached is not None:
                flight.result = self._from_cache(cached, status, started)
            else:
                flight.result = self._generate(key, organization, program, match, status, started)
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)
            flight.done.set()
        return flight.result

    def _generate(
        self,
        key: str,
        organization: OrganizationSummary,
        program: ProgramSummary,
        match: MatchScore,
        status: ProgramStatus,
        started: float,
    ) -> Explanation:
        system_prompt = build_system_prompt(status)
        user_prompt = build_user_prompt(organization, replace(program, status=status), match, as_of=self._today())

        def call() -> Tuple[ProviderResponse, float, Dict[str, Any]]:
            response = self.provider.generate(system_prompt, user_prompt)
            # Tokens are spent even if the answer turns out unusable
            cost = self.controller.record_cost(response.input_tokens, response.output_tokens)
            return response, cost, parse_explanation_response(response.text)

        try:
            response, cost, parsed = self.controller.execute(call, timeout=self.timeout_seconds)
        except ProviderError as e:
            logger.warning(f"Explanation generation failed for {key} ({e.reason}): {str(e)}")
            return self._fallback(organization, program, match, status, e.reason, started)
        except Exception as e:
            logger.error(f"Unexpected error generating explanation for {key}: {str(e)}", exc_info=True)
            return self._fallback(organization, program, match, status, "unknown", started)

        text = "\n".join([parsed["summary"], *parsed["reasons"], parsed["cautions"], parsed["recommendation"]])
        violations = detect_state_inconsistencies(text, status)
        log_state_inconsistencies(violations, status, context=key)

        explanation = Explanation(
            summary=parsed["summary"],
            reasons=parsed["reasons"],
            cautions=parsed["cautions"],
            recommendation=parsed["recommendation"],
            cached=False,
            cost=round(cost, 2),
            response_time_ms=self._elapsed_ms(started),
            usage={"input_tokens": response.input_tokens, "output_tokens": response.output_tokens},
            program_status=status,
            consistency_violations=[str(v) for v in violations],
        )
        self._cache_set(key, explanation)
        logger.info(
            f"Generated explanation for {key} (₩{explanation.cost:.2f}, {explanation.response_time_ms}ms)"
        )
        return explanation

    def _fallback(
        self,
        organization: OrganizationSummary,
        program: ProgramSummary,
        match: MatchScore,
        status: ProgramStatus,
        reason: FailureReason,
        started: float,
    ) -> Explanation:
        logger.warning(f"Using fallback content for match explanation: {get_error_message(reason, 'en')}")
        explanation = build_fallback_explanation(
            organization.name, program.title, match.total_score, status, reason
        )
        explanation.response_time_ms = self._elapsed_ms(started)
        return explanation

    def _from_cache(self, payload: Dict[str, Any], status: ProgramStatus, started: float) -> Explanation:
        fields = {name: payload[name] for name in CACHED_FIELDS if name in payload}
        fields.setdefault("program_status", status)
        fields.setdefault("cautions", "")
        fields.setdefault("recommendation", "")
        return Explanation(**fields, cached=True, cost=0.0, response_time_ms=self._elapsed_ms(started))

    def _cache_get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            return self.cache.get(key)
        except Exception as e:
            # Unreadable cache means a miss, not a failure
            logger.warning(f"Cache read error for {key}: {str(e)}")
            return None

    def _cache_set(self, key: str, explanation: Explanation) -> None:
        payload = {name: getattr(explanation, name) for name in CACHED_FIELDS}
        try:
            self.cache.set(key, payload, self.ttl_seconds)
        except Exception as e:
            logger.warning(f"Cache write error for {key}: {str(e)}")

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    # ==================== BATCH ====================

    def explain_batch(
        self,
        requests: Sequence[ExplanationRequest],
        delay_seconds: Optional[float] = None,
    ) -> List[Explanation]:
        """
        Explain matches one after another, pausing between provider calls to
        stay under the rate limit. A failing item yields a fallback and the
        batch continues.
        """
        delay = self.batch_delay_seconds if delay_seconds is None else delay_seconds
        results: List[Explanation] = []

        for index, request in enumerate(requests):
            status = request.program_status or request.program.status
            try:
                explanation = self.explain(request.organization, request.program, request.match, status)
            except Exception as e:
                logger.error(f"Batch explanation failed for program {request.program.id}: {str(e)}")
                explanation = build_fallback_explanation(
                    request.organization.name,
                    request.program.title,
                    request.match.total_score,
                    status,
                    "unknown",
                )
            results.append(explanation)

            # Cache hits made no provider call, so no need to pace them
            if index < len(requests) - 1 and not explanation.cached and delay > 0:
                self._sleep(delay)

        logger.info(
            f"Batch explanation complete: {len(results)} items, "
            f"{sum(1 for r in results if r.cached)} cached, {sum(1 for r in results if r.is_fallback)} fallback"
        )
        return results

    # ==================== CACHE MAINTENANCE ====================

    def cache_stats(self) -> Dict[str, Any]:
        try:
            return self.cache.stats(CACHE_KEY_PREFIX)
        except Exception as e:
            logger.error(f"Cache stats error: {str(e)}")
            return {"total_keys": 0, "size_kb": 0.0}

    def clear_cached(self, organization_id: str, program_id: str, status: Optional[ProgramStatus] = None) -> int:
        """Drop cached explanations for one match; all statuses unless one is given."""
        if status is not None:
            return int(self.cache.delete(explanation_cache_key(organization_id, program_id, status)))
        return self.cache.delete_prefix(f"{CACHE_KEY_PREFIX}{organization_id}:{program_id}:")

    def clear_all(self) -> int:
        """Drop every cached explanation. Maintenance only."""
        count = self.cache.delete_prefix(CACHE_KEY_PREFIX)
        logger.info(f"Cleared {count} cached explanations")
        return count

    def health_check(self) -> Dict[str, Any]:
        health = self.controller.health_check()
        health["cache"] = self.cache_stats()
        return health


def build_explanation_service() -> ExplanationService:
    """Wire the service from settings: Claude client, shared controller, configured cache."""
    return ExplanationService(
        provider=AIProviderClient(),
        controller=ResilienceController(),
        cache=build_cache(settings),
    )
