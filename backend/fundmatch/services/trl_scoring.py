"""
Confidence-weighted TRL scoring.

Raw proximity points (0-20) are graduated by distance from the program's TRL
range. The raw score is then pulled toward the neutral midpoint by a weight
derived from how the range was obtained: an explicitly stated range counts in
full, a range inferred from stage keywords counts for less, so it can neither
reward nor penalize a match as strongly.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

from fundmatch.core.types import EligibilityVerification, FundingProgram, TRLExtraction, TRLScoreDetail
from fundmatch.services.constraint_extractors import extract_trl


TRL_MAX_POINTS = 20
TRL_NEUTRAL_POINTS = 10
TRL_NO_REQUIREMENT_POINTS = 15

TRL_CONFIDENCE_WEIGHTS: Dict[str, float] = {
    "explicit": 1.0,
    "inferred": 0.6,
    "missing": 0.0,
}

# Distance -> points. Too low is penalized harder than too high: a mature
# technology can still take part in an earlier-stage program.
_BELOW_RANGE_POINTS = {1: 12, 2: 6, 3: 3}
_ABOVE_RANGE_POINTS = {1: 15, 2: 10, 3: 5}


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def resolve_trl_requirement(
    program: FundingProgram,
    eligibility: Optional[EligibilityVerification] = None,
) -> TRLExtraction:
    """
    TRL requirement of a program, with confidence.

    Precedence: the program's own min/max (confidence as recorded, explicit by
    default), then the TRL found during eligibility extraction, then the
    program's title and requirement text.
    """
    if program.min_trl is not None or program.max_trl is not None:
        confidence = program.trl_confidence or "explicit"
        if confidence != "missing":
            return TRLExtraction(program.min_trl, program.max_trl, confidence)
        return TRLExtraction(None, None, "missing")

    if eligibility is not None and eligibility.trl is not None and eligibility.trl.confidence != "missing":
        return eligibility.trl

    text = "\n".join(part for part in (program.title, program.requirement_text, program.attachment_text) if part)
    return extract_trl(text)


def score_trl(org_trl: int, requirement: TRLExtraction) -> TRLScoreDetail:
    """Score an organization's TRL (1-9) against a requirement. Max 20 points."""
    if requirement.confidence == "missing" or (requirement.min_trl is None and requirement.max_trl is None):
        return TRLScoreDetail(
            org_trl=org_trl,
            min_trl=None,
            max_trl=None,
            confidence="missing",
            weight=TRL_CONFIDENCE_WEIGHTS["missing"],
            raw_score=TRL_NO_REQUIREMENT_POINTS,
            score=TRL_NO_REQUIREMENT_POINTS,
            within_range=True,
            distance=0,
            reason="TRL_NO_REQUIREMENT",
        )

    min_trl = requirement.min_trl if requirement.min_trl is not None else 1
    max_trl = requirement.max_trl if requirement.max_trl is not None else 9

    if org_trl < min_trl:
        distance = min_trl - org_trl
        raw = _BELOW_RANGE_POINTS.get(distance, 0)
        reason = "TRL_BELOW_RANGE"
    elif org_trl > max_trl:
        distance = org_trl - max_trl
        raw = _ABOVE_RANGE_POINTS.get(distance, 0)
        reason = "TRL_ABOVE_RANGE"
    else:
        distance = 0
        raw = TRL_MAX_POINTS
        reason = "TRL_PERFECT_MATCH"

    weight = TRL_CONFIDENCE_WEIGHTS.get(requirement.confidence, TRL_CONFIDENCE_WEIGHTS["inferred"])
    weighted = round_half_up(TRL_NEUTRAL_POINTS + (raw - TRL_NEUTRAL_POINTS) * weight)
    weighted = max(0, min(TRL_MAX_POINTS, weighted))

    return TRLScoreDetail(
        org_trl=org_trl,
        min_trl=min_trl,
        max_trl=max_trl,
        confidence=requirement.confidence,
        weight=weight,
        raw_score=raw,
        score=weighted,
        within_range=distance == 0,
        distance=distance,
        reason=reason,
    )
