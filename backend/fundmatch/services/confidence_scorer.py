"""
Confidence grading for extracted eligibility constraints.

The grade is a pure function of how many of the six dimensions yielded a value
and which text the extraction ran against. Title-only extraction has a lower
ceiling (MEDIUM) than extraction from announcement attachments (HIGH).
"""

from typing import Dict, Optional, Sequence

from fundmatch.core.types import ConfidenceGrade, ExtractionMethod


DIMENSIONS = (
    "certifications",
    "employees",
    "revenue",
    "investment",
    "operating_years",
    "research_institute",
)

# Rank used when comparing two extractions of the same program
CONFIDENCE_RANK: Dict[str, int] = {"LOW": 0, "MEDIUM": 1, "HIGH": 2}


def count_fields_extracted(found: Dict[str, bool]) -> int:
    """Number of the six dimensions that produced a value."""
    return sum(1 for dimension in DIMENSIONS if found.get(dimension))


def determine_extraction_method(
    attachment_texts: Sequence[str],
    fallback_text: Optional[str],
) -> ExtractionMethod:
    """ANNOUNCEMENT_FILE if any attachment has text, TITLE_ONLY if only title/description, else NONE."""
    if any(text and text.strip() for text in attachment_texts):
        return "ANNOUNCEMENT_FILE"
    if fallback_text and fallback_text.strip():
        return "TITLE_ONLY"
    return "NONE"


def grade_confidence(fields_extracted: int, method: ExtractionMethod) -> ConfidenceGrade:
    """
    Confidence grade.

    - ANNOUNCEMENT_FILE: >=3 fields HIGH, 2 MEDIUM, else LOW
    - TITLE_ONLY: >=4 fields MEDIUM, else LOW (never HIGH)
    - NONE: LOW
    """
    if method == "ANNOUNCEMENT_FILE":
        if fields_extracted >= 3:
            return "HIGH"
        if fields_extracted == 2:
            return "MEDIUM"
        return "LOW"
    if method == "TITLE_ONLY" and fields_extracted >= 4:
        return "MEDIUM"
    return "LOW"
