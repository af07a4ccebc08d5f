"""
Eligibility Extraction Service

Orchestrates Section Locator -> Constraint Extractors -> Confidence Scorer and
produces one EligibilityVerification per program.

The document pipeline (outside this package) hands over already-decoded text:
the announcement title/description and the text of each attachment. This
service never fetches or parses binary formats.

Key Principles:
- Total: always returns a verification with a confidence grade, never raises
- Deterministic: identical text in, identical verification out
- Auditable: every positive match leaves a note with the matched substring
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from fundmatch.core.types import EligibilityVerification, SourceDocument, TRLExtraction
from fundmatch.db.models import EligibilityVerificationRecord
from fundmatch.services.confidence_scorer import (
    CONFIDENCE_RANK,
    count_fields_extracted,
    determine_extraction_method,
    grade_confidence,
)
from fundmatch.services.constraint_extractors import (
    EOK,
    describe_trl,
    extract_certifications,
    extract_employee_bounds,
    extract_investment_requirement,
    extract_operating_years,
    extract_research_institute_requirement,
    extract_revenue_bounds,
    extract_trl,
)
from fundmatch.services.section_locator import locate_sections

logger = logging.getLogger(__name__)


# Application forms, budget plans and guides restate requirements loosely
NON_ANNOUNCEMENT_FILE_PATTERN = re.compile(r"신청서|양식|집행계획|가이드")

# Investment requirements above this are unusual enough to review by hand
HIGH_INVESTMENT_REVIEW_THRESHOLD = 10 * EOK

TITLE_ONLY_NOTE = "⚠ 제목/설명만으로 추출 (첨부 공고문 없음)"
NO_TEXT_NOTE = "⚠ 추출 가능한 텍스트 없음"
UNSTRUCTURED_NOTE = "⚠ 자격요건 섹션 미발견: 전체 텍스트에서 추출"

AttachmentInput = Union[str, SourceDocument]

COMPARED_FIELDS = (
    "required_certifications",
    "preferred_certifications",
    "min_employees",
    "max_employees",
    "min_revenue",
    "max_revenue",
    "min_investment_amount",
    "min_operating_years",
    "max_operating_years",
    "research_institute_required",
)


@dataclass
class ExtractionComparison:
    """Difference between a fresh extraction and the stored one."""
    program_id: str
    matches_current: bool
    improvement_detected: bool
    diffs: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)  # field -> (current, new)
    notes: List[str] = field(default_factory=list)


class EligibilityExtractionService:
    """Rule-based eligibility extraction from announcement text."""

    def __init__(self, section_window: Optional[int] = None):
        self.section_window = section_window

    def extract_eligibility(
        self,
        program_id: str,
        raw_text: Optional[str],
        attachment_texts: Optional[Sequence[AttachmentInput]] = None,
    ) -> EligibilityVerification:
        """
        Extract structured eligibility constraints for one program.

        Args:
            program_id: Program identifier
            raw_text: Title and/or description of the announcement
            attachment_texts: Decoded attachment texts, as plain strings or
                SourceDocument(filename, text). Files whose names mark them as
                application forms or guides are skipped.

        Returns:
            EligibilityVerification (never raises)
        """
        try:
            return self._extract(program_id, raw_text, attachment_texts or [])
        except Exception as e:
            logger.error(f"Eligibility extraction failed for program {program_id}: {e}", exc_info=True)
            return EligibilityVerification(
                program_id=program_id,
                confidence="LOW",
                extraction_method="NONE",
                extraction_notes=[f"⚠ 추출 오류: {e}"],
                needs_manual_review=True,
                manual_review_reasons=["추출 중 오류 발생"],
                trl=TRLExtraction(None, None, "missing"),
            )

    def _extract(
        self,
        program_id: str,
        raw_text: Optional[str],
        attachment_texts: Sequence[AttachmentInput],
    ) -> EligibilityVerification:
        notes: List[str] = []
        documents, skipped = self._select_documents(attachment_texts)
        for filename in skipped:
            notes.append(f"공고문이 아닌 파일 제외: {filename}")

        method = determine_extraction_method([doc.text for doc in documents], raw_text)
        if method == "ANNOUNCEMENT_FILE":
            documents = [doc for doc in documents if doc.text and doc.text.strip()]
            source_text = "\n\n".join(doc.text for doc in documents)
            source_files = [doc.filename for doc in documents]
        elif method == "TITLE_ONLY":
            source_text = raw_text
            source_files = []
            notes.append(TITLE_ONLY_NOTE)
        else:
            source_text = ""
            source_files = []
            notes.append(NO_TEXT_NOTE)

        location = locate_sections(source_text, self.section_window)
        if source_text and not location.structured:
            notes.append(UNSTRUCTURED_NOTE)
        text = location.combined_text

        certifications = extract_certifications(text)
        employees = extract_employee_bounds(text)
        revenue = extract_revenue_bounds(text)
        investment = extract_investment_requirement(text)
        operating_years = extract_operating_years(text)
        research_institute = extract_research_institute_requirement(text)

        # TRL is not an eligibility section topic; search everything we were given
        trl = extract_trl("\n".join(part for part in (raw_text, source_text) if part))

        for result in (certifications, employees, revenue, investment, operating_years, research_institute):
            notes.extend(result.notes)
        trl_note = describe_trl(trl)
        if trl_note:
            notes.append(trl_note)

        fields_extracted = count_fields_extracted({
            "certifications": certifications.found,
            "employees": employees.found,
            "revenue": revenue.found,
            "investment": investment.found,
            "operating_years": operating_years.found,
            "research_institute": research_institute.found,
        })
        confidence = grade_confidence(fields_extracted, method)

        verification = EligibilityVerification(
            program_id=program_id,
            confidence=confidence,
            extraction_method=method,
            required_certifications=list(certifications.value.required) if certifications.found else [],
            preferred_certifications=list(certifications.value.preferred) if certifications.found else [],
            min_employees=employees.value.minimum if employees.found else None,
            max_employees=employees.value.maximum if employees.found else None,
            min_revenue=revenue.value.minimum if revenue.found else None,
            max_revenue=revenue.value.maximum if revenue.found else None,
            min_investment_amount=investment.value,
            min_operating_years=operating_years.value.minimum if operating_years.found else None,
            max_operating_years=operating_years.value.maximum if operating_years.found else None,
            research_institute_required=bool(research_institute.value),
            source_files=source_files,
            extraction_notes=notes,
            fields_extracted=fields_extracted,
            sme_inferred=certifications.found and certifications.value.sme_inferred,
            trl=trl,
        )

        reasons = self._manual_review_reasons(verification)
        verification.needs_manual_review = bool(reasons)
        verification.manual_review_reasons = reasons

        logger.info(
            f"Extracted eligibility for program {program_id}: method={method}, "
            f"fields={fields_extracted}, confidence={confidence}, trl={trl.confidence}"
        )
        if reasons:
            logger.warning(f"Program {program_id} flagged for manual review: {'; '.join(reasons)}")

        return verification

    @staticmethod
    def _select_documents(
        attachment_texts: Sequence[AttachmentInput],
    ) -> Tuple[List[SourceDocument], List[str]]:
        """Normalize attachments to SourceDocument and drop non-announcement files."""
        documents: List[SourceDocument] = []
        skipped: List[str] = []
        for index, item in enumerate(attachment_texts):
            if isinstance(item, SourceDocument):
                document = item
            else:
                document = SourceDocument(filename=f"attachment_{index + 1}", text=item or "")
            if NON_ANNOUNCEMENT_FILE_PATTERN.search(document.filename):
                skipped.append(document.filename)
                continue
            documents.append(document)
        return documents, skipped

    @staticmethod
    def _manual_review_reasons(verification: EligibilityVerification) -> List[str]:
        reasons = []
        if verification.confidence == "LOW" and verification.fields_extracted > 0:
            reasons.append("신뢰도 낮음: 일부 요건만 추출됨")
        if (verification.min_investment_amount or 0) > HIGH_INVESTMENT_REVIEW_THRESHOLD:
            reasons.append(f"높은 투자 요건 (₩{verification.min_investment_amount:,})")
        for label, low, high in (
            ("직원 수", verification.min_employees, verification.max_employees),
            ("매출액", verification.min_revenue, verification.max_revenue),
            ("업력", verification.min_operating_years, verification.max_operating_years),
        ):
            if low is not None and high is not None and low > high:
                reasons.append(f"{label} 범위 모순 (최소 {low:,} > 최대 {high:,})")
        if verification.sme_inferred:
            reasons.append("중소기업 요건이 문맥으로 추정됨")
        return reasons

    # ==================== COMPARISON ====================

    @staticmethod
    def compare_with_current(
        new: EligibilityVerification,
        current: Optional[EligibilityVerification],
    ) -> ExtractionComparison:
        """
        Compare a fresh extraction against the stored verification.

        improvement_detected is True when the new extraction has a higher
        confidence grade, or the same grade with more fields extracted.
        """
        if current is None:
            return ExtractionComparison(
                program_id=new.program_id,
                matches_current=False,
                improvement_detected=new.fields_extracted > 0,
                notes=["기존 추출 데이터 없음"],
            )

        diffs: Dict[str, Tuple[Any, Any]] = {}
        for name in COMPARED_FIELDS:
            old_value = getattr(current, name)
            new_value = getattr(new, name)
            if isinstance(old_value, list):
                old_value, new_value = sorted(old_value), sorted(new_value or [])
            if old_value != new_value:
                diffs[name] = (getattr(current, name), getattr(new, name))

        new_rank = CONFIDENCE_RANK[new.confidence]
        old_rank = CONFIDENCE_RANK[current.confidence]
        improvement = new_rank > old_rank or (
            new_rank == old_rank and new.fields_extracted > current.fields_extracted
        )

        notes = [f"{name}: {old!r} -> {value!r}" for name, (old, value) in diffs.items()]
        if new.confidence != current.confidence:
            notes.append(f"신뢰도 변경: {current.confidence} -> {new.confidence}")

        return ExtractionComparison(
            program_id=new.program_id,
            matches_current=not diffs,
            improvement_detected=improvement,
            diffs=diffs,
            notes=notes,
        )

    # ==================== PERSISTENCE ====================

    @staticmethod
    def save_verification(db: Session, verification: EligibilityVerification) -> EligibilityVerificationRecord:
        """Insert or replace the verification row for the program."""
        record = (
            db.query(EligibilityVerificationRecord)
            .filter(EligibilityVerificationRecord.program_id == verification.program_id)
            .first()
        )
        if record is None:
            record = EligibilityVerificationRecord(program_id=verification.program_id)
            db.add(record)

        trl = verification.trl or TRLExtraction(None, None, "missing")
        record.required_certifications = list(verification.required_certifications)
        record.preferred_certifications = list(verification.preferred_certifications)
        record.min_employees = verification.min_employees
        record.max_employees = verification.max_employees
        record.min_revenue = verification.min_revenue
        record.max_revenue = verification.max_revenue
        record.min_investment_amount = verification.min_investment_amount
        record.min_operating_years = verification.min_operating_years
        record.max_operating_years = verification.max_operating_years
        record.research_institute_required = verification.research_institute_required
        record.min_trl = trl.min_trl
        record.max_trl = trl.max_trl
        record.trl_confidence = trl.confidence
        record.confidence = verification.confidence
        record.extraction_method = verification.extraction_method
        record.fields_extracted = verification.fields_extracted
        record.source_files = list(verification.source_files)
        record.extraction_notes = list(verification.extraction_notes)
        record.sme_inferred = verification.sme_inferred
        record.needs_manual_review = verification.needs_manual_review
        record.manual_review_reasons = list(verification.manual_review_reasons)

        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def load_verification(db: Session, program_id: str) -> Optional[EligibilityVerification]:
        """Stored verification for a program, or None."""
        record = (
            db.query(EligibilityVerificationRecord)
            .filter(EligibilityVerificationRecord.program_id == program_id)
            .first()
        )
        if record is None:
            return None
        return EligibilityVerification(
            program_id=record.program_id,
            confidence=record.confidence,
            extraction_method=record.extraction_method,
            required_certifications=list(record.required_certifications or []),
            preferred_certifications=list(record.preferred_certifications or []),
            min_employees=record.min_employees,
            max_employees=record.max_employees,
            min_revenue=record.min_revenue,
            max_revenue=record.max_revenue,
            min_investment_amount=record.min_investment_amount,
            min_operating_years=record.min_operating_years,
            max_operating_years=record.max_operating_years,
            research_institute_required=record.research_institute_required,
            source_files=list(record.source_files or []),
            extraction_notes=list(record.extraction_notes or []),
            fields_extracted=record.fields_extracted,
            sme_inferred=record.sme_inferred,
            needs_manual_review=record.needs_manual_review,
            manual_review_reasons=list(record.manual_review_reasons or []),
            trl=TRLExtraction(record.min_trl, record.max_trl, record.trl_confidence),
        )
