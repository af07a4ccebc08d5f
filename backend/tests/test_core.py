"""
Settings, logging setup and session factory tests.
"""

import logging

import pytest

from fundmatch.core import logging_config
from fundmatch.core.config import Settings
from fundmatch.core.exceptions import (
    BudgetExceededError,
    CircuitOpenError,
    InvalidScoringInputError,
    ProviderRateLimitError,
    RateLimitExceededError,
)
from fundmatch.db import database


pytestmark = pytest.mark.unit


class TestSettings:

    def test_cost_per_1k_tokens_in_krw(self):
        config = Settings(AI_COST_PER_1K_INPUT_USD=0.003, AI_COST_PER_1K_OUTPUT_USD=0.015, USD_TO_KRW=1300.0)

        assert config.ai_cost_per_1k_input_krw == pytest.approx(3.9)
        assert config.ai_cost_per_1k_output_krw == pytest.approx(19.5)

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CIRCUIT_FAILURE_THRESHOLD", "7")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")

        config = Settings()

        assert config.CIRCUIT_FAILURE_THRESHOLD == 7
        assert config.REDIS_URL == "redis://cache:6379/1"


class TestExceptions:

    def test_failure_reasons(self):
        assert CircuitOpenError("open").reason == "circuit_open"
        assert CircuitOpenError("open").counts_toward_circuit is False
        assert RateLimitExceededError("local").counts_toward_circuit is False
        assert ProviderRateLimitError("429", status_code=429).reason == "rate_limited"
        assert ProviderRateLimitError("429", status_code=429).counts_toward_circuit is True

    def test_budget_refusal_is_an_open_circuit_to_callers(self):
        assert issubclass(BudgetExceededError, CircuitOpenError)
        assert BudgetExceededError("spent").reason == "budget_exceeded"

    def test_invalid_input_is_value_error(self):
        assert issubclass(InvalidScoringInputError, ValueError)


class TestLoggingSetup:

    @pytest.fixture
    def restore_root_logger(self, monkeypatch):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        monkeypatch.setattr(logging_config, "_logging_configured", False)
        yield root
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)

    def test_single_console_handler(self, restore_root_logger):
        logging_config.setup_logging(log_level="debug")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_second_call_is_a_no_op_unless_forced(self, restore_root_logger):
        logging_config.setup_logging(log_level="INFO")
        logging_config.setup_logging(log_level="ERROR")
        assert restore_root_logger.level == logging.INFO

        logging_config.setup_logging(log_level="ERROR", force=True)
        assert restore_root_logger.level == logging.ERROR
        assert len(restore_root_logger.handlers) == 1


class TestSessionFactory:

    def test_get_db_closes_session(self, monkeypatch):
        closed = []

        class RecordingSession:
            def close(self):
                closed.append(True)

        monkeypatch.setattr(database, "SessionLocal", RecordingSession)

        sessions = database.get_db()
        session = next(sessions)
        assert isinstance(session, RecordingSession)
        assert closed == []

        sessions.close()
        assert closed == [True]
