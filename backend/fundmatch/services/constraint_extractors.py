"""
Constraint Extractors - One Pure Function per Eligibility Dimension

Each extractor takes text and returns an ExtractionResult: the extracted value
(or None), the matched snippet that produced it, and human-readable notes for
auditing. Extractors never raise on unmatched input; "nothing found" is a
normal outcome.

Patterns come from the rule registry (eligibility_rules). This module only
decides how rule hits combine into a value.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from fundmatch.core.types import TRLExtraction
from fundmatch.services.eligibility_rules import (
    ExtractionRule,
    TRL_STAGE_KEYWORDS,
    TRL_STAGE_NAMES_KO,
    TRL_STAGE_RANGES,
    rules_for,
)


EOK = 100_000_000  # 1억 KRW


@dataclass
class ExtractionResult:
    """Value extracted for one dimension, with the evidence behind it."""
    value: Any = None
    snippet: Optional[str] = None
    notes: List[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.value is not None


@dataclass
class Bounds:
    """Inclusive numeric bounds; either side may be open."""
    minimum: Optional[int] = None
    maximum: Optional[int] = None

    @property
    def contradictory(self) -> bool:
        return self.minimum is not None and self.maximum is not None and self.minimum > self.maximum


@dataclass
class CertificationRequirements:
    """Required and preferred certifications (disjoint lists)."""
    required: List[str] = field(default_factory=list)
    preferred: List[str] = field(default_factory=list)
    sme_inferred: bool = False


def normalize_text(text: Optional[str]) -> str:
    """NFKC-normalize (full-width digits, tildes) and collapse runs of spaces."""
    if not text:
        return ""
    normalized = unicodedata.normalize("NFKC", text)
    return re.sub(r"[ \t]+", " ", normalized)


def _to_int(raw: str) -> int:
    return int(raw.replace(",", ""))


def _first_hit(rules: List[ExtractionRule], text: str) -> Tuple[Optional[ExtractionRule], Optional["re.Match"]]:
    for rule in rules:
        match = rule.search(text)
        if match:
            return rule, match
    return None, None


def _join_snippets(*snippets: Optional[str]) -> Optional[str]:
    found = [s for s in snippets if s]
    return " | ".join(found) if found else None


# ==================== CERTIFICATIONS ====================

def extract_certifications(text: str) -> ExtractionResult:
    """
    Extract required and preferred certifications.

    A certification is required when its noun phrase is followed by a
    mandatory verb (보유, 인정, 필수 ...), preferred when a preference verb
    (우대, 가점) follows within the same sentence. Required wins: a
    certification never appears in both lists.

    Fallback: if no certification pattern matched but 중소기업 co-occurs with
    an eligible-target phrase (지원대상, 대상, 신청자격), a general SME
    requirement is inferred and flagged with sme_inferred and a note.
    """
    text = normalize_text(text)
    requirements = CertificationRequirements()
    notes: List[str] = []
    snippets: List[str] = []

    for rule in rules_for("certification", "required"):
        match = rule.search(text)
        if match and rule.label not in requirements.required:
            requirements.required.append(rule.label)
            snippets.append(match.group(0))
            notes.append(f"필수 인증: {rule.label} ('{match.group(0)}')")

    for rule in rules_for("certification", "preferred"):
        if rule.label in requirements.required or rule.label in requirements.preferred:
            continue
        match = rule.search(text)
        if match:
            requirements.preferred.append(rule.label)
            snippets.append(match.group(0))
            notes.append(f"우대 인증: {rule.label} ('{match.group(0)}')")

    if not requirements.required and not requirements.preferred:
        rule, match = _first_hit(rules_for("certification", "fallback"), text)
        if match:
            requirements.required.append(rule.label)
            requirements.sme_inferred = True
            snippets.append(match.group(0))
            notes.append(
                f"⚠ {rule.label} 요건 추정 (명시적 인증 문구 없음, 문맥: '{match.group(0)}')"
            )

    if not requirements.required and not requirements.preferred:
        return ExtractionResult()
    return ExtractionResult(value=requirements, snippet=_join_snippets(*snippets), notes=notes)


# ==================== NUMERIC BOUNDS ====================

def _extract_bounds(
    text: str,
    dimension: str,
    multiplier: int,
    describe,
) -> ExtractionResult:
    text = normalize_text(text)
    bounds = Bounds()
    snippets: List[str] = []
    notes: List[str] = []

    min_rule, min_match = _first_hit(rules_for(dimension, "min"), text)
    if min_match:
        bounds.minimum = (_to_int(min_match.group(1)) + min_rule.adjust) * multiplier
        snippets.append(min_match.group(0))
        notes.append(f"{describe('min', bounds.minimum)} ('{min_match.group(0)}')")

    max_rule, max_match = _first_hit(rules_for(dimension, "max"), text)
    if max_match:
        bounds.maximum = (_to_int(max_match.group(1)) + max_rule.adjust) * multiplier
        snippets.append(max_match.group(0))
        notes.append(f"{describe('max', bounds.maximum)} ('{max_match.group(0)}')")

    # "N~M명" only fills bounds the explicit qualifiers did not provide
    if bounds.minimum is None or bounds.maximum is None:
        _, range_match = _first_hit(rules_for(dimension, "range"), text)
        if range_match:
            low = _to_int(range_match.group(1)) * multiplier
            high = _to_int(range_match.group(2)) * multiplier
            filled = True
            if bounds.minimum is None and bounds.maximum is None:
                bounds.minimum, bounds.maximum = low, high
            elif bounds.minimum is None and low <= bounds.maximum:
                bounds.minimum = low
            elif bounds.maximum is None and high >= bounds.minimum:
                bounds.maximum = high
            else:
                filled = False
            if filled:
                snippets.append(range_match.group(0))
                notes.append(f"{describe('range', (bounds.minimum, bounds.maximum))} ('{range_match.group(0)}')")

    if bounds.minimum is None and bounds.maximum is None:
        return ExtractionResult()
    return ExtractionResult(value=bounds, snippet=_join_snippets(*snippets), notes=notes)


def _describe_employees(kind: str, value) -> str:
    if kind == "min":
        return f"최소 직원 수: {value}명"
    if kind == "max":
        return f"최대 직원 수: {value}명"
    return f"직원 수 범위: {value[0]}~{value[1]}명"


def _describe_revenue(kind: str, value) -> str:
    if kind == "min":
        return f"최소 매출액: ₩{value:,}"
    if kind == "max":
        return f"최대 매출액: ₩{value:,}"
    return f"매출액 범위: ₩{value[0]:,}~₩{value[1]:,}"


def _describe_operating_years(kind: str, value) -> str:
    if kind == "min":
        return f"최소 업력: {value}년"
    if kind == "max":
        return f"최대 업력: {value}년"
    return f"업력 범위: {value[0]}~{value[1]}년"


def extract_employee_bounds(text: str) -> ExtractionResult:
    """Headcount bounds: "직원 N명 이상", "N명 이하/미만", "N~M명"."""
    return _extract_bounds(text, "employees", 1, _describe_employees)


def extract_revenue_bounds(text: str) -> ExtractionResult:
    """Revenue bounds in KRW from "매출액 X억 원 이상/이하" (X억 = X * 100,000,000)."""
    return _extract_bounds(text, "revenue", EOK, _describe_revenue)


def extract_operating_years(text: str) -> ExtractionResult:
    """
    Business-age bounds.

    Minimum from "업력/창업/설립 N년 이상"; maximum from "창업 N년 이내" and the
    startup-program convention "7년 이내 창업기업".
    """
    return _extract_bounds(text, "operating_years", 1, _describe_operating_years)


# ==================== INVESTMENT ====================

def extract_investment_requirement(text: str) -> ExtractionResult:
    """
    Minimum cumulative investment in KRW.

    The explicit "투자유치 N억" pattern wins; otherwise the common round amounts
    (2억/5억/10억 이상 투자) are tried in table order.
    """
    text = normalize_text(text)

    _, match = _first_hit(rules_for("investment", "min"), text)
    if match:
        amount = _to_int(match.group(1)) * EOK
        return ExtractionResult(
            value=amount,
            snippet=match.group(0),
            notes=[f"최소 투자 유치 금액: ₩{amount:,} ('{match.group(0)}')"],
        )

    rule, match = _first_hit(rules_for("investment", "fallback"), text)
    if match:
        return ExtractionResult(
            value=rule.value,
            snippet=match.group(0),
            notes=[f"최소 투자 유치 금액: ₩{rule.value:,} ('{match.group(0)}')"],
        )

    return ExtractionResult()


# ==================== RESEARCH INSTITUTE ====================

def extract_research_institute_requirement(text: str) -> ExtractionResult:
    """True when a corporate research institute / R&D department must be held."""
    text = normalize_text(text)
    _, match = _first_hit(rules_for("research_institute", "flag"), text)
    if not match:
        return ExtractionResult()
    return ExtractionResult(
        value=True,
        snippet=match.group(0),
        notes=[f"연구소/전담부서 보유 필요 ('{match.group(0)}')"],
    )


# ==================== TRL ====================

def _stage_for_range(min_trl: int, max_trl: int) -> str:
    midpoint = (min_trl + max_trl) / 2
    if midpoint <= 3:
        return "BASIC"
    if midpoint <= 6:
        return "APPLIED"
    return "COMMERCIALIZATION"


def extract_trl(text: str) -> TRLExtraction:
    """
    TRL requirement with its confidence.

    - explicit: "TRL 4-6", "TRL4~6", "기술성숙도 7-9", "TRL 6 이상"
    - inferred: stage keywords (응용연구 -> 4-6); the stage with the most keyword
      hits wins, ties go to the keyword appearing first in the text
    - missing: neither
    """
    text = normalize_text(text)

    for rule in rules_for("trl", "explicit"):
        match = rule.search(text)
        if not match:
            continue
        low, high = int(match.group(1)), int(match.group(2))
        if 1 <= low <= high <= 9:
            return TRLExtraction(low, high, "explicit", _stage_for_range(low, high), match.group(0))

    for rule in rules_for("trl", "min"):
        match = rule.search(text)
        if match and 1 <= int(match.group(1)) <= 9:
            low = int(match.group(1))
            return TRLExtraction(low, 9, "explicit", _stage_for_range(low, 9), match.group(0))

    compact = re.sub(r"\s+", "", text).upper()
    best_stage = None
    best_hits = 0
    best_position = len(compact)
    best_keyword = None
    for stage, keywords in TRL_STAGE_KEYWORDS.items():
        hits = 0
        first_position = len(compact)
        first_keyword = None
        for keyword in keywords:
            position = compact.find(keyword.upper())
            if position >= 0:
                hits += compact.count(keyword.upper())
                if position < first_position:
                    first_position = position
                    first_keyword = keyword
        if hits > best_hits or (hits == best_hits and hits > 0 and first_position < best_position):
            best_stage, best_hits, best_position, best_keyword = stage, hits, first_position, first_keyword

    if best_stage:
        low, high = TRL_STAGE_RANGES[best_stage]
        return TRLExtraction(low, high, "inferred", best_stage, best_keyword)

    return TRLExtraction(None, None, "missing")


def describe_trl(extraction: TRLExtraction) -> Optional[str]:
    """Audit note for a TRL extraction, or None when missing."""
    if extraction.confidence == "missing":
        return None
    stage_name = TRL_STAGE_NAMES_KO.get(extraction.stage, "")
    if extraction.confidence == "explicit":
        return f"TRL {extraction.min_trl}-{extraction.max_trl} 명시 ('{extraction.snippet}')"
    return f"TRL {extraction.min_trl}-{extraction.max_trl} 추정 ({stage_name}, 키워드: '{extraction.snippet}')"
