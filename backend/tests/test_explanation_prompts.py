"""
Explanation prompt and response parsing tests.
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import VALID_RESPONSE
from fundmatch.core.exceptions import MalformedResponseError
from fundmatch.core.types import Criterion, OrganizationSummary, ProgramSummary
from fundmatch.services.explanation_prompts import (
    ACTIVE_SYSTEM_PROMPT,
    ARCHIVED_SYSTEM_PROMPT,
    EXPIRED_SYSTEM_PROMPT,
    build_system_prompt,
    build_user_prompt,
    deadline_urgency,
    parse_explanation_response,
)
from fundmatch.services.match_scoring_service import MatchScoringService


pytestmark = pytest.mark.unit


@pytest.fixture
def prompt_inputs(venture_org, ict_program, today):
    match = MatchScoringService.score_match(venture_org, ict_program, as_of=today)
    return OrganizationSummary.from_organization(venture_org), ProgramSummary.from_program(ict_program), match


class TestSystemPrompt:

    def test_prompt_per_status(self):
        assert build_system_prompt("ACTIVE") == ACTIVE_SYSTEM_PROMPT
        assert build_system_prompt("EXPIRED") == EXPIRED_SYSTEM_PROMPT
        assert build_system_prompt("ARCHIVED") == ARCHIVED_SYSTEM_PROMPT

    @pytest.mark.parametrize("status", ["EXPIRED", "ARCHIVED"])
    def test_closed_prompts_forbid_solicitation_and_error_wording(self, status):
        prompt = build_system_prompt(status)

        assert "시스템 오류" in prompt
        assert "권유하는 표현 금지" in prompt


class TestDeadlineUrgency:

    @pytest.mark.parametrize("days,expected", [
        (5, "긴급: 마감까지 5일 남음 - 즉시 검토 필요"),
        (7, "긴급: 마감까지 7일 남음 - 즉시 검토 필요"),
        (10, "마감까지 10일 - 1주 내 착수 권장"),
        (20, "마감까지 20일 - 2-3주 준비 기간 확보"),
        (31, ""),
        (0, "긴급: 마감까지 0일 남음 - 즉시 검토 필요"),
        (-3, ""),
    ])
    def test_thresholds(self, today, days, expected):
        assert deadline_urgency(today + timedelta(days=days), today) == expected

    def test_no_deadline(self, today):
        assert deadline_urgency(None, today) == ""


class TestUserPrompt:

    def test_sections_and_scores(self, prompt_inputs, today):
        organization, program, match = prompt_inputs

        prompt = build_user_prompt(organization, program, match, as_of=today)

        for tag in ("<context>", "<company_info>", "<program_info>", "<match_score>", "<instructions>"):
            assert tag in prompt
        assert "회사명: 테크스타트" in prompt
        assert "요구 TRL: TRL 7-9" in prompt
        assert "총점: 86/100점" in prompt
        assert "- 산업 분야 매칭: 25/25점" in prompt
        assert "2-3주 준비 기간 확보" in prompt
        assert "<missing_requirements>" not in prompt

    def test_failed_criteria_listed(self, prompt_inputs, today):
        organization, program, match = prompt_inputs
        match = replace(match, failed_criteria=[Criterion("필수 인증 미보유: ISMS-P")])

        prompt = build_user_prompt(organization, program, match, as_of=today)

        assert "<missing_requirements>" in prompt
        assert "미충족 요건: 필수 인증 미보유: ISMS-P" in prompt

    def test_expired_program_has_no_urgency(self, prompt_inputs, today):
        organization, program, match = prompt_inputs

        prompt = build_user_prompt(organization, replace(program, status="EXPIRED"), match, as_of=today)

        assert "접수 기간은 종료되었습니다" in prompt
        assert "마감까지" not in prompt


class TestParseResponse:

    def test_valid_response(self):
        parsed = parse_explanation_response(VALID_RESPONSE)

        assert parsed["summary"] == "귀사는 본 과제에 일반적으로 적합합니다."
        assert len(parsed["reasons"]) == 3
        assert parsed["cautions"].startswith("필수 인증 요건을")
        assert parsed["recommendation"].endswith("준비하세요.")

    def test_optional_sections_default_to_empty(self):
        parsed = parse_explanation_response("<summary>요약입니다.</summary><reasons><reason>근거</reason></reasons>")

        assert parsed["cautions"] == ""
        assert parsed["recommendation"] == ""

    @pytest.mark.parametrize("text", [
        "",
        None,
        "태그 없는 일반 텍스트 응답입니다.",
        "<summary>요약</summary>",
        "<summary> </summary><reason>근거</reason>",
    ])
    def test_malformed(self, text):
        with pytest.raises(MalformedResponseError):
            parse_explanation_response(text)
