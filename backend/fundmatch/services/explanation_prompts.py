"""
Prompt templates for Korean match explanations.

The system prompt depends on the program's lifecycle status; the user prompt
carries company, program and score details and asks for an XML-tagged answer
that parse_explanation_response turns into fields.
"""

import re
from datetime import date
from typing import Dict, List, Optional

from fundmatch.core.exceptions import MalformedResponseError
from fundmatch.core.types import MatchScore, OrganizationSummary, ProgramStatus, ProgramSummary
from fundmatch.services.match_scoring_service import DIMENSION_MAXIMA


ACTIVE_SYSTEM_PROMPT = """당신은 정부 R&D 과제 매칭 전문가입니다.

역할:
- 현재 신청 가능한 R&D 과제에 대한 지원 가능성 평가
- 매칭 점수의 구체적 근거 제시
- 신청 전 필수 확인사항 안내 (TRL, 예산, 자격요건)
- 마감일 기준 준비 일정 제안

제약사항:
- 선정을 보장하는 표현 금지 ("반드시 선정됩니다" 금지)
- 일반적인 안내만 제공 ("일반적으로 적합합니다" 허용)
- 최종 확인은 공고문 참조 안내 필수"""

EXPIRED_SYSTEM_PROMPT = """당신은 정부 R&D 과제 매칭 전문가입니다.

역할:
- 내년도 유사 과제 대비를 위한 학습 자료 제공
- 이 매칭이 왜 적합했는지 분석 (회사 강점 파악)
- 다음 공고 대비 전략적 준비사항 제안
- 현재 보완 가능한 요건 식별

표현 지침:
- "마감되었습니다"와 같은 부정적 표현 금지
- "시스템 오류"와 같은 불신 유발 표현 절대 금지
- 신청 또는 지원을 권유하는 표현 금지
- 학습 관점의 긍정적이고 미래 지향적인 톤"""

ARCHIVED_SYSTEM_PROMPT = """당신은 정부 R&D 과제 매칭 전문가입니다.

역할:
- 과거 매칭 이유 분석 (회사 강점 파악용)
- 유사한 현재 활성 과제 탐색 방향 제안
- 회사 프로필 최적화 조언

표현 지침:
- 영구 중단 사실을 명확히 전달
- "시스템 오류"와 같은 불신 유발 표현 절대 금지
- 신청 또는 지원을 권유하는 표현 금지
- 대안 탐색에 집중하는 긍정적 톤"""

SYSTEM_PROMPTS: Dict[str, str] = {
    "ACTIVE": ACTIVE_SYSTEM_PROMPT,
    "EXPIRED": EXPIRED_SYSTEM_PROMPT,
    "ARCHIVED": ARCHIVED_SYSTEM_PROMPT,
}

STATUS_CONTEXT: Dict[str, str] = {
    "ACTIVE": "이 과제는 현재 신청 가능합니다. 지원 가능성을 평가하고 실행 계획을 제시하세요.",
    "EXPIRED": "이 과제의 접수 기간은 종료되었습니다. 내년도 유사 과제 준비를 위한 학습 자료로 활용하세요.",
    "ARCHIVED": "이 과제는 영구 중단되었습니다. 귀사 강점 파악 및 대체 과제 탐색에 활용하세요.",
}

BREAKDOWN_LABELS: Dict[str, str] = {
    "industry": "산업 분야 매칭",
    "trl": "TRL 적합성",
    "certifications": "인증 요건",
    "budget": "예산 적합성",
    "experience": "R&D 경험",
    "deadline": "마감 일정",
    "stage": "업력 단계",
}


def build_system_prompt(status: ProgramStatus) -> str:
    return SYSTEM_PROMPTS.get(status, ACTIVE_SYSTEM_PROMPT)


def deadline_urgency(deadline: Optional[date], as_of: Optional[date] = None) -> str:
    """Urgency line for ACTIVE programs; empty beyond 30 days, past the deadline or without one."""
    if deadline is None:
        return ""
    days_remaining = (deadline - (as_of or date.today())).days
    if days_remaining < 0:
        return ""

    if days_remaining <= 7:
        return f"긴급: 마감까지 {days_remaining}일 남음 - 즉시 검토 필요"
    if days_remaining <= 14:
        return f"마감까지 {days_remaining}일 - 1주 내 착수 권장"
    if days_remaining <= 30:
        return f"마감까지 {days_remaining}일 - 2-3주 준비 기간 확보"
    return ""


def _format_won(amount: Optional[int]) -> str:
    return f"{amount:,}원" if amount is not None else "정보 없음"


def _format_trl_range(min_trl: Optional[int], max_trl: Optional[int]) -> str:
    if min_trl is None and max_trl is None:
        return "명시되지 않음"
    if min_trl == max_trl:
        return f"TRL {min_trl}"
    return f"TRL {min_trl or 1}-{max_trl or 9}"


def _missing_requirements(match: MatchScore) -> List[str]:
    return [criterion.message for criterion in match.failed_criteria]


def build_user_prompt(
    organization: OrganizationSummary,
    program: ProgramSummary,
    match: MatchScore,
    as_of: Optional[date] = None,
) -> str:
    status_context = STATUS_CONTEXT.get(program.status, STATUS_CONTEXT["ACTIVE"])
    if program.status == "ACTIVE":
        urgency = deadline_urgency(program.deadline, as_of)
        if urgency:
            status_context = f"{status_context}\n{urgency}"

    breakdown = match.breakdown.as_dict()
    score_lines = "\n".join(
        f"- {BREAKDOWN_LABELS[name]}: {points}/{DIMENSION_MAXIMA[name]}점"
        for name, points in breakdown.items()
    )

    certifications = ", ".join(organization.certifications) if organization.certifications else "없음"
    requirements = ", ".join(program.requirements) if program.requirements else "없음"
    industry = ", ".join(program.industry_tags) if program.industry_tags else "제한 없음"
    deadline = program.deadline.isoformat() if program.deadline else "미정"
    employees = f"{organization.employee_count}명" if organization.employee_count is not None else "정보 없음"

    missing = _missing_requirements(match)
    missing_block = ""
    if missing:
        missing_block = f"\n<missing_requirements>\n미충족 요건: {', '.join(missing)}\n</missing_requirements>\n"

    return f"""<context>{status_context}</context>

<company_info>
회사명: {organization.name}
산업 분야: {organization.industry}
기술 수준: TRL {organization.trl_level}
연매출: {_format_won(organization.revenue)}
직원 수: {employees}
R&D 경험: {organization.rd_experience_years}년
보유 인증: {certifications}
</company_info>

<program_info>
과제명: {program.title}
주관 기관: {program.agency or '정보 없음'}
지원 예산: {_format_won(program.budget_ceiling)}
요구 TRL: {_format_trl_range(program.min_trl, program.max_trl)}
대상 산업: {industry}
마감일: {deadline}
필수 요건: {requirements}
</program_info>

<match_score>
총점: {match.total_score}/100점
적격성: {match.eligibility_level}

점수 상세:
{score_lines}
</match_score>
{missing_block}
<instructions>
위 정보를 바탕으로 매칭 결과를 설명해주세요.

응답 구조:
1. <summary>한 문장 요약</summary>
2. <reasons>
   <reason>이유 1: 구체적 근거 포함</reason>
   <reason>이유 2: 점수 또는 수치 언급</reason>
   <reason>이유 3: 비교 근거 활용</reason>
   </reasons>
3. <cautions>주의사항 (있을 경우만)</cautions>
4. <recommendation>다음 단계 제안</recommendation>

응답 가이드라인:
- 각 이유는 30-50자 내외
- 존댓말 필수 (습니다, 입니다)
- 구체적 숫자와 근거 포함
- 긍정적이되 과장 금지
</instructions>"""


_SUMMARY_RE = re.compile(r"<summary>(.*?)</summary>", re.DOTALL)
_REASON_RE = re.compile(r"<reason>(.*?)</reason>", re.DOTALL)
_CAUTIONS_RE = re.compile(r"<cautions>(.*?)</cautions>", re.DOTALL)
_RECOMMENDATION_RE = re.compile(r"<recommendation>(.*?)</recommendation>", re.DOTALL)


def parse_explanation_response(text: str) -> Dict[str, object]:
    """
    Parse the tagged model answer.

    Returns:
        Dict with summary, reasons (list), cautions, recommendation

    Raises:
        MalformedResponseError: summary or reasons missing
    """
    summary_match = _SUMMARY_RE.search(text or "")
    reasons = [reason.strip() for reason in _REASON_RE.findall(text or "") if reason.strip()]

    if not summary_match or not summary_match.group(1).strip():
        raise MalformedResponseError("Model response has no <summary> section")
    if not reasons:
        raise MalformedResponseError("Model response has no <reason> entries")

    cautions_match = _CAUTIONS_RE.search(text)
    recommendation_match = _RECOMMENDATION_RE.search(text)

    return {
        "summary": summary_match.group(1).strip(),
        "reasons": reasons,
        "cautions": cautions_match.group(1).strip() if cautions_match else "",
        "recommendation": recommendation_match.group(1).strip() if recommendation_match else "",
    }
