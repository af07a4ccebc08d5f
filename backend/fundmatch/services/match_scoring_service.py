"""
Match Scoring Service - Deterministic Organization x Program Scoring

Turns an organization/program pair (plus the program's extracted eligibility,
when available) into a MatchScore: a weighted per-dimension breakdown, an
eligibility classification and the met/failed criteria behind it.

Dimension maxima (sum = 100):
- Industry fit: 25
- TRL fit (confidence-weighted): 20
- Certifications: 20
- Budget/scale fit: 15
- R&D experience: 10
- Deadline urgency: 5
- Business-stage fit: 5

Key Principles:
- Deterministic: same inputs (including as_of) = same MatchScore
- Integer components; the total is their sum
- Hard requirement failures force INELIGIBLE regardless of score
- Missing core fields are the caller's bug, never guessed
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from fundmatch.core.exceptions import InvalidScoringInputError
from fundmatch.core.types import (
    Criterion,
    EligibilityLevel,
    EligibilityVerification,
    FundingProgram,
    MatchScore,
    Organization,
    ScoreBreakdown,
)
from fundmatch.db.models import MatchScoreRecord
from fundmatch.services.eligibility_rules import normalize_certification
from fundmatch.services.trl_scoring import resolve_trl_requirement, round_half_up, score_trl

logger = logging.getLogger(__name__)


DIMENSION_MAXIMA: Dict[str, int] = {
    "industry": 25,
    "trl": 20,
    "certifications": 20,
    "budget": 15,
    "experience": 10,
    "deadline": 5,
    "stage": 5,
}

RESEARCH_INSTITUTE_CODES = {"DCP", "RDC"}


@dataclass
class EligibilityCheckResult:
    """Outcome of the hard/soft requirement checks."""
    level: EligibilityLevel
    met_criteria: List[str] = field(default_factory=list)
    failed_criteria: List[Criterion] = field(default_factory=list)
    needs_manual_review: bool = False


def _won(amount: int) -> str:
    return f"₩{amount:,}"


def _normalize_term(term: str) -> str:
    return re.sub(r"\s+", "", term or "").lower()


def _tag_terms(tag: str) -> set:
    return {term for term in re.split(r"[\s/,·&()]+", (tag or "").lower()) if term}


class MatchScoringService:
    """Deterministic scoring of organizations against funding programs."""

    # ==================== INPUT VALIDATION ====================

    @staticmethod
    def validate_inputs(organization: Organization, program: FundingProgram) -> None:
        """
        Reject inputs missing core fields.

        Raises:
            InvalidScoringInputError: organization id/sector/TRL or program
                id/title missing or out of range, or program min TRL > max TRL.
        """
        if not organization.id:
            raise InvalidScoringInputError("Organization id is required")
        if not organization.industry_sector or not organization.industry_sector.strip():
            raise InvalidScoringInputError(f"Organization {organization.id}: industry_sector is required")
        if not isinstance(organization.trl_level, int) or not 1 <= organization.trl_level <= 9:
            raise InvalidScoringInputError(
                f"Organization {organization.id}: trl_level must be an integer in 1-9, got {organization.trl_level!r}"
            )
        if not program.id:
            raise InvalidScoringInputError("Program id is required")
        if not program.title or not program.title.strip():
            raise InvalidScoringInputError(f"Program {program.id}: title is required")
        for name in ("min_trl", "max_trl"):
            value = getattr(program, name)
            if value is not None and not 1 <= value <= 9:
                raise InvalidScoringInputError(f"Program {program.id}: {name} must be in 1-9, got {value}")
        if program.min_trl is not None and program.max_trl is not None and program.min_trl > program.max_trl:
            raise InvalidScoringInputError(
                f"Program {program.id}: min_trl ({program.min_trl}) > max_trl ({program.max_trl})"
            )

    # ==================== MATCH SCORE ====================

    @staticmethod
    def score_match(
        organization: Organization,
        program: FundingProgram,
        eligibility: Optional[EligibilityVerification] = None,
        as_of: Optional[date] = None,
    ) -> MatchScore:
        """
        Score one organization against one program.

        Args:
            organization: Applicant profile
            program: Funding program
            eligibility: Extracted constraints for the program (optional)
            as_of: Reference date for deadline urgency (defaults to today;
                pass it explicitly for reproducible scores)

        Returns:
            MatchScore whose breakdown sums to total_score

        Raises:
            InvalidScoringInputError: if core fields are missing
        """
        MatchScoringService.validate_inputs(organization, program)
        as_of = as_of or date.today()
        reasons: List[str] = []

        industry = MatchScoringService.score_industry(organization, program, reasons)
        trl_detail = score_trl(organization.trl_level, resolve_trl_requirement(program, eligibility))
        reasons.append(trl_detail.reason)
        certifications = MatchScoringService.score_certifications(organization, eligibility, reasons)
        budget = MatchScoringService.score_budget(organization, program, reasons)
        experience = MatchScoringService.score_experience(organization, reasons)
        deadline = MatchScoringService.score_deadline(program, as_of, reasons)
        stage = MatchScoringService.score_stage(organization, eligibility, reasons)

        breakdown = ScoreBreakdown(
            industry=industry,
            trl=trl_detail.score,
            certifications=certifications,
            budget=budget,
            experience=experience,
            deadline=deadline,
            stage=stage,
        )
        check = MatchScoringService.check_eligibility(organization, eligibility)

        return MatchScore(
            organization_id=organization.id,
            program_id=program.id,
            total_score=breakdown.total,
            breakdown=breakdown,
            eligibility_level=check.level,
            met_criteria=check.met_criteria,
            failed_criteria=check.failed_criteria,
            trl_detail=trl_detail,
            needs_manual_review=check.needs_manual_review,
            reasons=reasons,
        )

    # ==================== DIMENSION SCORES ====================

    @staticmethod
    def score_industry(organization: Organization, program: FundingProgram, reasons: List[str]) -> int:
        """
        Industry fit (0-25).

        - Program lists no industry tags: 12 (no restriction)
        - Organization sector matches a tag: 25
        - Otherwise 5 points per organization keyword found in the program's
          title/tags/requirement text, up to 15
        """
        raw_tags = [tag for tag in program.industry_tags if tag and tag.strip()]
        if not raw_tags:
            reasons.append("INDUSTRY_NO_RESTRICTION")
            return 12

        sector = _normalize_term(organization.industry_sector)
        # Whole tag or one of its terms, never a fragment of a word
        if any(sector == _normalize_term(tag) or sector in _tag_terms(tag) for tag in raw_tags):
            reasons.append("INDUSTRY_EXACT_MATCH")
            return 25

        haystack = _normalize_term(" ".join([program.title, program.requirement_text] + list(program.industry_tags)))
        keywords = {_normalize_term(k) for k in organization.industry_keywords if k and k.strip()}
        hits = sorted(k for k in keywords if k in haystack)
        if hits:
            reasons.append("INDUSTRY_KEYWORD_MATCH")
            return min(15, 5 * len(hits))

        reasons.append("INDUSTRY_MISMATCH")
        return 0

    @staticmethod
    def score_certifications(
        organization: Organization,
        eligibility: Optional[EligibilityVerification],
        reasons: List[str],
    ) -> int:
        """
        Certification overlap (0-20).

        With required certifications: 15 points pro rata for required ones
        held, plus 5 pro rata for preferred ones held (5 outright when none are
        listed). With only preferred ones: 10 + 10 pro rata. Neither: 10.
        """
        required = eligibility.required_certifications if eligibility else []
        preferred = eligibility.preferred_certifications if eligibility else []
        if not required and not preferred:
            reasons.append("CERTIFICATIONS_NOT_REQUIRED")
            return 10

        held = {normalize_certification(cert) for cert in organization.certifications}
        held_required = sum(1 for cert in required if normalize_certification(cert) in held)
        held_preferred = sum(1 for cert in preferred if normalize_certification(cert) in held)

        if required:
            score = round_half_up(15 * held_required / len(required))
            score += round_half_up(5 * held_preferred / len(preferred)) if preferred else 5
            reasons.append(
                "CERTIFICATIONS_REQUIRED_MET" if held_required == len(required) else "CERTIFICATIONS_REQUIRED_MISSING"
            )
        else:
            score = 10 + round_half_up(10 * held_preferred / len(preferred))
            if held_preferred:
                reasons.append("CERTIFICATIONS_PREFERRED_HELD")
        return min(20, score)

    @staticmethod
    def score_budget(organization: Organization, program: FundingProgram, reasons: List[str]) -> int:
        """
        Budget/scale fit (0-15): program budget ceiling relative to revenue.

        <=50% of revenue: 15, <=100%: 12, <=200%: 8, larger: 4.
        Unknown budget or revenue: 8.
        """
        if not program.budget_ceiling or not organization.revenue or organization.revenue <= 0:
            reasons.append("BUDGET_UNKNOWN")
            return 8

        ratio = program.budget_ceiling / organization.revenue
        if ratio <= 0.5:
            reasons.append("BUDGET_WELL_WITHIN_SCALE")
            return 15
        if ratio <= 1.0:
            reasons.append("BUDGET_WITHIN_SCALE")
            return 12
        if ratio <= 2.0:
            reasons.append("BUDGET_STRETCH")
            return 8
        reasons.append("BUDGET_EXCEEDS_SCALE")
        return 4

    @staticmethod
    def score_experience(organization: Organization, reasons: List[str]) -> int:
        """
        R&D experience (0-10).

        Raw points out of 15: 10 for any R&D experience, plus a graduated
        collaboration bonus (1 = +2, 2-3 = +4, 4+ = +5); scaled to 10.
        """
        raw = 0
        if organization.rd_experience_years and organization.rd_experience_years > 0:
            raw += 10
            reasons.append("RD_EXPERIENCE")

        count = organization.collaboration_count or 0
        if count == 1:
            raw += 2
            reasons.append("COLLABORATION_LIMITED")
        elif 2 <= count <= 3:
            raw += 4
            reasons.append("COLLABORATION_MODERATE")
        elif count >= 4:
            raw += 5
            reasons.append("COLLABORATION_EXTENSIVE")

        return round_half_up(min(15, raw) * 10 / 15)

    @staticmethod
    def score_deadline(program: FundingProgram, as_of: date, reasons: List[str]) -> int:
        """Deadline urgency (0-5): <=7 days 5, <=30 4, <=60 3, later or none 2, past 0."""
        if program.deadline is None:
            reasons.append("DEADLINE_UNKNOWN")
            return 2

        days_until = (program.deadline - as_of).days
        if days_until < 0:
            reasons.append("DEADLINE_PASSED")
            return 0
        if days_until <= 7:
            reasons.append("DEADLINE_URGENT")
            return 5
        if days_until <= 30:
            reasons.append("DEADLINE_SOON")
            return 4
        if days_until <= 60:
            reasons.append("DEADLINE_MODERATE")
            return 3
        reasons.append("DEADLINE_FAR")
        return 2

    @staticmethod
    def score_stage(
        organization: Organization,
        eligibility: Optional[EligibilityVerification],
        reasons: List[str],
    ) -> int:
        """
        Business-stage fit (0-5) against operating-year bounds.

        Within bounds: 5, no bounds: 3, unknown business age: 2, outside: 0.
        """
        min_years = eligibility.min_operating_years if eligibility else None
        max_years = eligibility.max_operating_years if eligibility else None
        if min_years is None and max_years is None:
            reasons.append("STAGE_NO_RESTRICTION")
            return 3
        if organization.operating_years is None:
            reasons.append("STAGE_UNKNOWN")
            return 2
        if (min_years is None or organization.operating_years >= min_years) and (
            max_years is None or organization.operating_years <= max_years
        ):
            reasons.append("STAGE_MATCH")
            return 5
        reasons.append("STAGE_MISMATCH")
        return 0

    # ==================== ELIGIBILITY ====================

    @staticmethod
    def check_eligibility(
        organization: Organization,
        eligibility: Optional[EligibilityVerification],
    ) -> EligibilityCheckResult:
        """
        Hard and soft requirement checks.

        HARD (=> INELIGIBLE): missing required certification, headcount /
        revenue / business-age bounds violated, research institute missing,
        verified investment below the requirement.
        SOFT (=> CONDITIONALLY_ELIGIBLE): investment history missing or not yet
        verified, organization data missing for a stated bound, context-inferred
        SME requirement not evidenced.
        FULLY_ELIGIBLE only with no failed criteria at all.
        """
        met: List[str] = []
        failed: List[Criterion] = []
        manual_review = False

        if eligibility is None:
            return EligibilityCheckResult(level="FULLY_ELIGIBLE")

        held = {normalize_certification(cert) for cert in organization.certifications}

        # Required certifications
        if eligibility.required_certifications:
            missing = [c for c in eligibility.required_certifications if normalize_certification(c) not in held]
            inferred_only = eligibility.sme_inferred and all(normalize_certification(c) == "SME" for c in missing)
            if missing and inferred_only:
                failed.append(Criterion(f"중소기업 확인 필요 (공고문 문맥상 추정): {', '.join(missing)}", "SOFT"))
                manual_review = True
            elif missing:
                failed.append(Criterion(f"필수 인증 미보유: {', '.join(missing)}", "HARD"))
            else:
                met.append(f"필수 인증 보유: {', '.join(eligibility.required_certifications)}")

        # Investment
        if eligibility.min_investment_amount:
            required_amount = eligibility.min_investment_amount
            verified = sum(r.amount for r in organization.investment_history if r.verified)
            unverified = sum(r.amount for r in organization.investment_history if not r.verified)
            if not organization.investment_history:
                failed.append(Criterion(f"투자 유치 실적 미확인 (필요: {_won(required_amount)})", "SOFT"))
                manual_review = True
            elif verified >= required_amount:
                met.append(f"투자 유치 금액 충족 (보유: {_won(verified)}, 필요: {_won(required_amount)})")
            elif verified + unverified >= required_amount:
                failed.append(Criterion(
                    f"투자 유치 실적 검증 필요 (검증: {_won(verified)}, 미검증: {_won(unverified)}, "
                    f"필요: {_won(required_amount)})",
                    "SOFT",
                ))
                manual_review = True
            else:
                failed.append(Criterion(
                    f"투자 유치 금액 부족 (보유: {_won(verified + unverified)}, 필요: {_won(required_amount)})",
                    "HARD",
                ))

        # Headcount
        missing_data = MatchScoringService._check_bounds(
            value=organization.employee_count,
            minimum=eligibility.min_employees,
            maximum=eligibility.max_employees,
            fmt=lambda v: f"{v}명",
            labels=("직원 수", "최소 직원 수 미충족", "최대 직원 수 초과"),
            met=met,
            failed=failed,
        )

        # Revenue
        missing_data |= MatchScoringService._check_bounds(
            value=organization.revenue,
            minimum=eligibility.min_revenue,
            maximum=eligibility.max_revenue,
            fmt=_won,
            labels=("매출액", "최소 매출액 미충족", "최대 매출액 초과"),
            met=met,
            failed=failed,
        )

        # Business age
        missing_data |= MatchScoringService._check_bounds(
            value=organization.operating_years,
            minimum=eligibility.min_operating_years,
            maximum=eligibility.max_operating_years,
            fmt=lambda v: f"{v}년",
            labels=("업력", "최소 업력 미충족", "최대 업력 초과"),
            met=met,
            failed=failed,
        )

        # Research institute
        if eligibility.research_institute_required:
            if organization.has_research_institute or held & RESEARCH_INSTITUTE_CODES:
                met.append("기업부설연구소/연구개발전담부서 보유")
            else:
                failed.append(Criterion("기업부설연구소/연구개발전담부서 미보유", "HARD"))

        # Preferred certifications are soft pluses, never failures
        matched_preferred = [
            c for c in eligibility.preferred_certifications if normalize_certification(c) in held
        ]
        if matched_preferred:
            met.append(f"우대 인증 보유: {', '.join(matched_preferred)}")

        if missing_data:
            manual_review = True

        return EligibilityCheckResult(
            level=MatchScoringService.eligibility_level(failed),
            met_criteria=met,
            failed_criteria=failed,
            needs_manual_review=manual_review,
        )

    @staticmethod
    def _check_bounds(value, minimum, maximum, fmt, labels, met: List[str], failed: List[Criterion]) -> bool:
        """Append met/failed criteria for one bounded field. Returns True when the organization value is missing."""
        name, below_label, above_label = labels
        if minimum is None and maximum is None:
            return False
        if value is None:
            failed.append(Criterion(f"{name} 정보 없음", "SOFT"))
            return True

        ok = True
        if minimum is not None and value < minimum:
            failed.append(Criterion(f"{below_label} (보유: {fmt(value)}, 필요: {fmt(minimum)} 이상)", "HARD"))
            ok = False
        if maximum is not None and value > maximum:
            failed.append(Criterion(f"{above_label} (보유: {fmt(value)}, 필요: {fmt(maximum)} 이하)", "HARD"))
            ok = False
        if ok:
            met.append(f"{name} 충족 ({fmt(value)})")
        return False

    @staticmethod
    def eligibility_level(failed_criteria: Iterable[Criterion]) -> EligibilityLevel:
        """INELIGIBLE on any HARD failure, CONDITIONALLY_ELIGIBLE on SOFT only, else FULLY_ELIGIBLE."""
        severities = {criterion.severity for criterion in failed_criteria}
        if "HARD" in severities:
            return "INELIGIBLE"
        if "SOFT" in severities:
            return "CONDITIONALLY_ELIGIBLE"
        return "FULLY_ELIGIBLE"

    # ==================== RANKING ====================

    @staticmethod
    def rank_matches(matches: Iterable[MatchScore], programs: Sequence[FundingProgram]) -> List[MatchScore]:
        """
        Order matches for one organization.

        Higher total first, then earlier deadline (no deadline last), then
        program id. Stable across runs for identical input.
        """
        deadlines = {program.id: program.deadline for program in programs}

        def sort_key(match: MatchScore):
            deadline = deadlines.get(match.program_id)
            return (-match.total_score, deadline is None, deadline or date.max, match.program_id)

        return sorted(matches, key=sort_key)

    @staticmethod
    def normalize_title_for_dedup(title: str) -> str:
        """Strip year prefixes/suffixes and trailing parentheticals for duplicate detection."""
        normalized = re.sub(r"^\d{4}년도?\s*", "", title or "")
        normalized = re.sub(r"\([^)]*\)\s*$", "", normalized)
        normalized = re.sub(r"_?\(?20\d{2}\)?.*$", "", normalized)
        return re.sub(r"\s+", " ", normalized).strip().lower()

    @staticmethod
    def deduplicate_programs(programs: Sequence[FundingProgram]) -> List[FundingProgram]:
        """
        One program per (agency, normalized title).

        Within a group, programs with a deadline win, then programs with a
        budget, then the first one given.
        """
        groups: Dict[str, List[FundingProgram]] = {}
        for program in programs:
            key = f"{program.agency}|{MatchScoringService.normalize_title_for_dedup(program.title)}"
            groups.setdefault(key, []).append(program)

        selected = []
        for group in groups.values():
            ordered = sorted(
                enumerate(group),
                key=lambda item: (item[1].deadline is None, not item[1].budget_ceiling, item[0]),
            )
            selected.append(ordered[0][1])
        return selected

    @staticmethod
    def generate_matches(
        organization: Organization,
        programs: Sequence[FundingProgram],
        eligibilities: Optional[Dict[str, EligibilityVerification]] = None,
        as_of: Optional[date] = None,
        minimum_score: int = 0,
        include_ineligible: bool = False,
        deduplicate: bool = True,
    ) -> List[MatchScore]:
        """
        Score an organization against many programs and rank the results.

        INELIGIBLE matches and matches below minimum_score are dropped unless
        include_ineligible is set. Each pair is scored independently.
        """
        eligibilities = eligibilities or {}
        as_of = as_of or date.today()
        candidates = MatchScoringService.deduplicate_programs(programs) if deduplicate else list(programs)

        matches = []
        for program in candidates:
            score = MatchScoringService.score_match(organization, program, eligibilities.get(program.id), as_of)
            if score.eligibility_level == "INELIGIBLE" and not include_ineligible:
                continue
            if score.total_score < minimum_score:
                continue
            matches.append(score)

        logger.info(
            f"Generated {len(matches)} matches for organization {organization.id} "
            f"from {len(candidates)} programs ({len(programs) - len(candidates)} duplicates removed)"
        )
        return MatchScoringService.rank_matches(matches, candidates)

    # ==================== PERSISTENCE ====================

    @staticmethod
    def save_match_score(db: Session, match: MatchScore) -> MatchScoreRecord:
        """Insert or replace the stored score for (organization, program)."""
        record = (
            db.query(MatchScoreRecord)
            .filter(
                MatchScoreRecord.organization_id == match.organization_id,
                MatchScoreRecord.program_id == match.program_id,
            )
            .first()
        )
        if record is None:
            record = MatchScoreRecord(organization_id=match.organization_id, program_id=match.program_id)
            db.add(record)

        record.total_score = match.total_score
        record.breakdown = match.breakdown.as_dict()
        record.eligibility_level = match.eligibility_level
        record.met_criteria = list(match.met_criteria)
        record.failed_criteria = [{"message": c.message, "severity": c.severity} for c in match.failed_criteria]
        record.trl_detail = match.to_dict()["trl_detail"]
        record.needs_manual_review = match.needs_manual_review

        db.commit()
        db.refresh(record)
        return record
