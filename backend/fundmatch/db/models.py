"""
Database models.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, BigInteger, UniqueConstraint, Index
from sqlalchemy.sql import func
from fundmatch.db.database import Base


class EligibilityVerificationRecord(Base):
    """Extracted eligibility constraints (one row per program, re-creatable)."""
    __tablename__ = "eligibility_verifications"

    id = Column(Integer, primary_key=True, index=True)
    program_id = Column(String(100), nullable=False, unique=True, index=True)

    # Certifications (Korean display names, e.g. "벤처기업", "INNO-BIZ")
    required_certifications = Column(JSON, nullable=False, default=list)
    preferred_certifications = Column(JSON, nullable=False, default=list)

    # Numeric bounds (KRW amounts stored as BigInteger)
    min_employees = Column(Integer, nullable=True)
    max_employees = Column(Integer, nullable=True)
    min_revenue = Column(BigInteger, nullable=True)
    max_revenue = Column(BigInteger, nullable=True)
    min_investment_amount = Column(BigInteger, nullable=True)
    min_operating_years = Column(Integer, nullable=True)
    max_operating_years = Column(Integer, nullable=True)
    research_institute_required = Column(Boolean, nullable=False, default=False)

    # TRL requirement found in the same text
    min_trl = Column(Integer, nullable=True)
    max_trl = Column(Integer, nullable=True)
    trl_confidence = Column(String(20), nullable=False, default="missing")  # 'explicit', 'inferred', 'missing'

    # Extraction provenance
    confidence = Column(String(10), nullable=False, index=True)  # 'HIGH', 'MEDIUM', 'LOW'
    extraction_method = Column(String(30), nullable=False)  # 'ANNOUNCEMENT_FILE', 'TITLE_ONLY', 'NONE'
    fields_extracted = Column(Integer, nullable=False, default=0)
    source_files = Column(JSON, nullable=False, default=list)
    extraction_notes = Column(JSON, nullable=False, default=list)
    sme_inferred = Column(Boolean, nullable=False, default=False)

    # Manual review queue
    needs_manual_review = Column(Boolean, nullable=False, default=False, index=True)
    manual_review_reasons = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class MatchScoreRecord(Base):
    """Latest score of one organization against one program (full recompute on change)."""
    __tablename__ = "match_scores"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(100), nullable=False, index=True)
    program_id = Column(String(100), nullable=False, index=True)
    total_score = Column(Integer, nullable=False)
    breakdown = Column(JSON, nullable=False)  # {"industry": 20, "trl": 16, ...}
    eligibility_level = Column(String(30), nullable=False)
    met_criteria = Column(JSON, nullable=False, default=list)
    failed_criteria = Column(JSON, nullable=False, default=list)  # [{"message": ..., "severity": "HARD"}]
    trl_detail = Column(JSON, nullable=True)
    needs_manual_review = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("organization_id", "program_id", name="uq_match_scores_org_program"),
        Index("ix_match_scores_org_total", "organization_id", "total_score"),
    )
