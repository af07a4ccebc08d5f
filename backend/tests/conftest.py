"""
Test configuration and shared fixtures.

Fixtures:
- Reference date and sample organizations/programs
- In-memory SQLite session
- Fake clock, fake provider and a resilience controller wired to them
"""

import threading
from datetime import date, timedelta
from typing import Callable, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fundmatch.core.types import FundingProgram, InvestmentRecord, Organization
from fundmatch.db.database import init_db
from fundmatch.services.ai_client import ProviderResponse
from fundmatch.services.constraint_extractors import EOK
from fundmatch.services.resilience import (
    CircuitBreaker,
    ResilienceController,
    SpendGuard,
    TokenBucketRateLimiter,
)


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Tests using the database or several services")


# =============================================================================
# Domain fixtures
# =============================================================================

TODAY = date(2025, 3, 1)


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def venture_org() -> Organization:
    """Seoul AI startup: TRL 8, 25 staff, 5억 revenue, verified 3억 investment."""
    return Organization(
        id="org-1",
        name="테크스타트",
        industry_sector="ICT",
        trl_level=8,
        industry_keywords=["인공지능", "클라우드"],
        revenue=5 * EOK,
        employee_count=25,
        certifications=["벤처기업", "ISO 9001"],
        rd_experience_years=3,
        collaboration_count=2,
        investment_history=[InvestmentRecord(amount=3 * EOK, source="시리즈A", verified=True)],
        operating_years=4,
        has_research_institute=False,
    )


@pytest.fixture
def ict_program(today) -> FundingProgram:
    """ICT program, explicit TRL 7-9, 2억 budget, deadline in 20 days."""
    return FundingProgram(
        id="prog-1",
        title="2025년 AI 기반 클라우드 보안 기술개발",
        agency="정보통신기획평가원",
        budget_ceiling=2 * EOK,
        min_trl=7,
        max_trl=9,
        trl_confidence="explicit",
        industry_tags=["ICT"],
        deadline=today + timedelta(days=20),
    )


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


# =============================================================================
# Time and provider doubles
# =============================================================================

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


VALID_RESPONSE = """<summary>귀사는 본 과제에 일반적으로 적합합니다.</summary>
<reasons>
<reason>산업 분야가 과제 대상과 일치합니다 (25/25점)</reason>
<reason>TRL 8 수준으로 요구 범위 7-9에 부합합니다</reason>
<reason>과제 예산이 매출 규모 대비 적정합니다</reason>
</reasons>
<cautions>필수 인증 요건을 공고문에서 다시 확인하시기 바랍니다.</cautions>
<recommendation>공고문의 지원 자격을 검토한 뒤 사업계획서를 준비하세요.</recommendation>"""


class FakeProvider:
    """
    TextGenerator double.

    handler(system, prompt) may return a ProviderResponse or raise; by default
    every call returns VALID_RESPONSE with 1,000 input and 1,000 output tokens.
    """

    def __init__(self, handler: Optional[Callable[[str, str], ProviderResponse]] = None):
        self.handler = handler
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def generate(self, system: str, prompt: str) -> ProviderResponse:
        with self._lock:
            self.calls.append(prompt)
        if self.handler is not None:
            return self.handler(system, prompt)
        return ProviderResponse(text=VALID_RESPONSE, input_tokens=1000, output_tokens=1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def controller(clock) -> ResilienceController:
    """Controller with a 3-failure threshold and a fake clock; 1K tokens cost ₩3.9 in / ₩19.5 out."""
    ctrl = ResilienceController(
        circuit_breaker=CircuitBreaker(
            failure_threshold=3,
            failure_window_seconds=60,
            open_timeout_seconds=30,
            half_open_max_requests=1,
            clock=clock,
        ),
        rate_limiter=TokenBucketRateLimiter(rate_per_minute=60, clock=clock),
        spend_guard=SpendGuard(daily_budget_krw=50000, today=lambda: TODAY),
        cost_per_1k_input_krw=3.9,
        cost_per_1k_output_krw=19.5,
    )
    yield ctrl
    ctrl.shutdown()
