"""
Fallback content and state-consistency tests.
"""

import logging

import pytest

from fundmatch.services.fallback_content import (
    CAUTION_TEMPLATES,
    build_fallback_explanation,
    get_error_message,
)
from fundmatch.services.state_consistency import (
    ConsistencyRule,
    detect_state_inconsistencies,
    log_state_inconsistencies,
)


pytestmark = pytest.mark.unit

STATUSES = ["ACTIVE", "EXPIRED", "ARCHIVED"]


def full_text(explanation):
    return "\n".join([explanation.summary, *explanation.reasons, explanation.cautions, explanation.recommendation])


class TestFallbackContent:

    @pytest.mark.parametrize("status", STATUSES)
    @pytest.mark.parametrize("reason", sorted(CAUTION_TEMPLATES))
    def test_fallback_is_free_and_uncached(self, status, reason):
        explanation = build_fallback_explanation("테크스타트", "AI 과제", 86, status, reason)

        assert explanation.cached is False
        assert explanation.cost == 0.0
        assert explanation.fallback_reason == reason
        assert explanation.program_status == status
        assert len(explanation.reasons) == 3

    @pytest.mark.parametrize("status", STATUSES)
    @pytest.mark.parametrize("reason", sorted(CAUTION_TEMPLATES))
    def test_fallback_text_passes_consistency_rules(self, status, reason):
        explanation = build_fallback_explanation("테크스타트", "AI 과제", 86, status, reason)

        assert detect_state_inconsistencies(full_text(explanation), status) == []

    def test_summary_mentions_names_and_score(self):
        explanation = build_fallback_explanation("테크스타트", "AI 과제", 72)

        assert explanation.summary == "테크스타트의 사업 분야와 'AI 과제' 과제의 지원 목적이 72점으로 매칭되었습니다."

    def test_unknown_status_and_reason_degrade_gracefully(self):
        explanation = build_fallback_explanation("", "", 50, "PAUSED", "quota")

        assert explanation.program_status == "ACTIVE"
        assert explanation.fallback_reason == "unknown"
        assert "귀사" in explanation.summary

    def test_error_messages(self):
        assert get_error_message("budget_exceeded", "en").startswith("Daily AI budget")
        assert get_error_message("timeout") == "AI 응답 시간이 초과되었습니다. 다시 시도해 주세요."
        assert get_error_message("no_such_reason", "en") == "An unexpected error occurred. Please try again."


class TestStateConsistency:

    def test_active_language_in_expired_text(self):
        violations = detect_state_inconsistencies("이 과제는 현재 신청 가능합니다. 마감까지 5일 남았습니다.", "EXPIRED")

        assert [v.kind for v in violations] == ["ACTIVE_APPLICATION_LANGUAGE", "ACTIVE_APPLICATION_LANGUAGE"]
        assert str(violations[0]) == "ACTIVE_APPLICATION_LANGUAGE: 신청 가능"

    def test_solicitation_in_archived_text(self):
        violations = detect_state_inconsistencies("사업계획서를 준비하여 지원하시기 바랍니다.", "ARCHIVED")

        assert [v.kind for v in violations] == ["ACTION_SOLICITATION"]

    def test_active_language_allowed_for_active_programs(self):
        assert detect_state_inconsistencies("지금 바로 신청하세요. 마감까지 5일 남았습니다.", "ACTIVE") == []

    @pytest.mark.parametrize("status", STATUSES)
    def test_error_language_flagged_for_every_status(self, status):
        violations = detect_state_inconsistencies("죄송합니다. 시스템 오류로 분석이 지연되었습니다.", status)

        assert {v.kind for v in violations} == {"ERROR_LANGUAGE"}
        assert len(violations) == 2

    def test_custom_rules(self):
        rules = [ConsistencyRule(r"선정\s*보장", "ACTION_SOLICITATION", ("ACTIVE",))]

        assert len(detect_state_inconsistencies("선정 보장 과제입니다", "ACTIVE", rules)) == 1
        assert detect_state_inconsistencies("선정 보장 과제입니다", "EXPIRED", rules) == []

    def test_logging_is_warning_only(self, caplog):
        violations = detect_state_inconsistencies("접수 중인 과제입니다.", "EXPIRED")

        with caplog.at_level(logging.WARNING, logger="fundmatch.services.state_consistency"):
            log_state_inconsistencies(violations, "EXPIRED", context="match:explanation:o:p:EXPIRED")
            log_state_inconsistencies([], "EXPIRED")

        assert len(caplog.records) == 1
        assert "접수 중" in caplog.records[0].getMessage()


def test_budget_refusal_reads_like_an_open_circuit():
    budget = build_fallback_explanation("테크스타트", "AI 과제", 86, "ACTIVE", "budget_exceeded")
    circuit = build_fallback_explanation("테크스타트", "AI 과제", 86, "ACTIVE", "circuit_open")

    assert budget.cautions == circuit.cautions
    assert budget.fallback_reason == "budget_exceeded"
