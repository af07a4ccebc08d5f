"""
Static fallback content for match explanations.

Used whenever AI generation fails. Everything here is a pure function of the
failure reason, the program status and the names/score passed in, so the
fallback path works with no provider, no cache and no network.
"""

from typing import Dict, List, Literal

from fundmatch.core.exceptions import FailureReason
from fundmatch.core.types import Explanation, ProgramStatus


Language = Literal["en", "ko"]


# ==================== STATUS TEMPLATES ====================

SUMMARY_TEMPLATES: Dict[str, str] = {
    "ACTIVE": "{org}의 사업 분야와 '{program}' 과제의 지원 목적이 {score}점으로 매칭되었습니다.",
    "EXPIRED": "{org}와 '{program}' 과제는 {score}점으로 매칭되었으며, 내년도 유사 과제 준비에 참고할 수 있습니다.",
    "ARCHIVED": "{org}와 {score}점으로 매칭되었던 '{program}' 과제는 영구 중단되었으나, 귀사 역량은 여전히 유효합니다.",
}

REASON_TEMPLATES: Dict[str, List[str]] = {
    "ACTIVE": [
        "귀사의 사업 분야와 과제의 목적이 일치합니다",
        "과제 요구사항과 귀사의 역량이 부합합니다",
        "매칭 점수가 지원 기준을 충족합니다",
    ],
    "EXPIRED": [
        "귀사의 사업 분야와 과제의 목적이 일치합니다",
        "과제 요구사항을 기준으로 귀사의 강점을 파악할 수 있습니다",
        "내년도 유사 과제 준비를 위한 학습 자료로 활용할 수 있습니다",
    ],
    "ARCHIVED": [
        "과거 매칭 이력을 통해 귀사의 강점을 파악할 수 있습니다",
        "과제 분야와 귀사 역량의 연관성은 여전히 유효합니다",
        "유사한 현재 활성 과제 탐색의 기준으로 활용할 수 있습니다",
    ],
}

RECOMMENDATION_TEMPLATES: Dict[str, str] = {
    "ACTIVE": "과제 공고문 상세 검토 (지원 자격, TRL 요구사항) 후 필요한 인증 및 서류를 준비하고 신청 마감일을 확인하세요.",
    "EXPIRED": "내년 1-2월 유사 공고를 모니터링하고, 과제 요구사항(TRL, 인증)을 기준으로 보완점을 미리 준비하세요.",
    "ARCHIVED": "현재 활성 과제 중 카테고리와 TRL 요구사항이 유사한 과제를 찾아보고, 회사 프로필을 최신 상태로 유지하세요.",
}


# ==================== FAILURE REASON TEMPLATES ====================

CAUTION_TEMPLATES: Dict[str, str] = {
    "circuit_open": "AI 서비스 일시 중단으로 상세 분석을 제공할 수 없습니다. 과제 공고문을 직접 검토하여 세부 요건을 확인하세요.",
    "rate_limited": "요청이 많아 상세 분석을 잠시 제공할 수 없습니다. 과제 공고문을 직접 검토하여 세부 요건을 확인하세요.",
    "budget_exceeded": "AI 서비스 일시 중단으로 상세 분석을 제공할 수 없습니다. 과제 공고문을 직접 검토하여 세부 요건을 확인하세요.",
    "timeout": "AI 응답이 지연되어 상세 분석을 제공할 수 없습니다. 과제 공고문을 직접 검토하여 세부 요건을 확인하세요.",
    "malformed_response": "AI 분석 결과를 정리하지 못해 기본 안내를 제공합니다. 과제 공고문을 직접 검토하여 세부 요건을 확인하세요.",
    "provider_unavailable": "AI 서비스 일시 중단으로 상세 분석을 제공할 수 없습니다. 과제 공고문을 직접 검토하여 세부 요건을 확인하세요.",
    "unknown": "AI 서비스 일시 중단으로 상세 분석을 제공할 수 없습니다. 과제 공고문을 직접 검토하여 세부 요건을 확인하세요.",
}

ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "circuit_open": {
        "en": "AI service is temporarily unavailable due to high failure rate. Please try again in a moment.",
        "ko": "AI 서비스가 일시적으로 중단되었습니다 (높은 오류율). 잠시 후 다시 시도해 주세요.",
    },
    "rate_limited": {
        "en": "Too many requests. Please wait a moment and try again.",
        "ko": "요청이 너무 많습니다. 잠시 기다린 후 다시 시도해 주세요.",
    },
    "budget_exceeded": {
        "en": "Daily AI budget has been exceeded. Service will resume tomorrow at midnight KST.",
        "ko": "일일 AI 예산이 초과되었습니다. 자정(KST)에 서비스가 재개됩니다.",
    },
    "timeout": {
        "en": "The AI service took too long to respond. Please try again.",
        "ko": "AI 응답 시간이 초과되었습니다. 다시 시도해 주세요.",
    },
    "malformed_response": {
        "en": "The AI service returned an unreadable response. Please try again.",
        "ko": "AI 응답을 해석할 수 없습니다. 다시 시도해 주세요.",
    },
    "provider_unavailable": {
        "en": "AI service is experiencing issues. Please try again later.",
        "ko": "AI 서비스에 문제가 발생했습니다. 잠시 후 다시 시도해 주세요.",
    },
    "unknown": {
        "en": "An unexpected error occurred. Please try again.",
        "ko": "예상치 못한 오류가 발생했습니다. 다시 시도해 주세요.",
    },
}


def build_fallback_explanation(
    organization_name: str,
    program_title: str,
    match_score: int,
    status: ProgramStatus = "ACTIVE",
    reason: FailureReason = "unknown",
) -> Explanation:
    """Templated explanation for a failed generation. Never cached, cost 0."""
    status_key = status if status in SUMMARY_TEMPLATES else "ACTIVE"
    reason_key = reason if reason in CAUTION_TEMPLATES else "unknown"

    return Explanation(
        summary=SUMMARY_TEMPLATES[status_key].format(
            org=organization_name or "귀사",
            program=program_title or "R&D 과제",
            score=match_score,
        ),
        reasons=list(REASON_TEMPLATES[status_key]),
        cautions=CAUTION_TEMPLATES[reason_key],
        recommendation=RECOMMENDATION_TEMPLATES[status_key],
        cached=False,
        cost=0.0,
        program_status=status_key,
        fallback_reason=reason_key,
    )


def get_error_message(reason: FailureReason, lang: Language = "ko") -> str:
    """Operator/user-facing message for a failure reason."""
    messages = ERROR_MESSAGES.get(reason, ERROR_MESSAGES["unknown"])
    return messages.get(lang, messages["en"])
