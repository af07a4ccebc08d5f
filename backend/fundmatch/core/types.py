"""
Domain types shared by extraction, scoring and explanation.

Plain dataclasses, so every service stays a pure function of its inputs.
"""

from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Dict, List, Optional, Literal, Any


# Type aliases
OrganizationType = Literal["COMPANY", "RESEARCH_INSTITUTE", "UNIVERSITY"]
ProgramStatus = Literal["ACTIVE", "EXPIRED", "ARCHIVED"]
ConfidenceGrade = Literal["HIGH", "MEDIUM", "LOW"]
ExtractionMethod = Literal["ANNOUNCEMENT_FILE", "TITLE_ONLY", "NONE"]
TRLConfidence = Literal["explicit", "inferred", "missing"]
TRLStage = Literal["BASIC", "APPLIED", "COMMERCIALIZATION"]
EligibilityLevel = Literal["FULLY_ELIGIBLE", "CONDITIONALLY_ELIGIBLE", "INELIGIBLE"]
CriterionSeverity = Literal["HARD", "SOFT"]


@dataclass
class InvestmentRecord:
    """One investment round received by an organization."""
    amount: int  # KRW
    source: str = ""
    verified: bool = False
    received_on: Optional[date] = None


@dataclass
class Organization:
    """An applicant entity (company, research institute or university)."""
    id: str
    name: str
    industry_sector: str
    trl_level: int  # 1-9
    organization_type: OrganizationType = "COMPANY"
    industry_keywords: List[str] = field(default_factory=list)
    revenue: Optional[int] = None  # KRW
    employee_count: Optional[int] = None
    certifications: List[str] = field(default_factory=list)
    rd_experience_years: int = 0
    collaboration_count: int = 0
    investment_history: List[InvestmentRecord] = field(default_factory=list)
    operating_years: Optional[int] = None
    has_research_institute: bool = False

    def __post_init__(self):
        # Certification set: drop duplicates, keep first-seen order
        seen = set()
        unique = []
        for cert in self.certifications:
            if cert not in seen:
                seen.add(cert)
                unique.append(cert)
        self.certifications = unique


@dataclass
class FundingProgram:
    """A government funding announcement."""
    id: str
    title: str
    agency: str = ""
    budget_ceiling: Optional[int] = None  # KRW
    min_trl: Optional[int] = None
    max_trl: Optional[int] = None
    trl_confidence: Optional[TRLConfidence] = None  # None = derive from text
    industry_tags: List[str] = field(default_factory=list)
    deadline: Optional[date] = None
    status: ProgramStatus = "ACTIVE"
    requirement_text: str = ""
    attachment_text: str = ""


@dataclass
class SourceDocument:
    """Already-decoded text of one announcement attachment."""
    filename: str
    text: str


@dataclass
class TRLExtraction:
    """TRL requirement found in program text."""
    min_trl: Optional[int]
    max_trl: Optional[int]
    confidence: TRLConfidence
    stage: Optional[TRLStage] = None
    snippet: Optional[str] = None


@dataclass
class EligibilityVerification:
    """Structured eligibility constraints extracted for one program."""
    program_id: str
    confidence: ConfidenceGrade
    extraction_method: ExtractionMethod
    required_certifications: List[str] = field(default_factory=list)
    preferred_certifications: List[str] = field(default_factory=list)
    min_employees: Optional[int] = None
    max_employees: Optional[int] = None
    min_revenue: Optional[int] = None
    max_revenue: Optional[int] = None
    min_investment_amount: Optional[int] = None
    min_operating_years: Optional[int] = None
    max_operating_years: Optional[int] = None
    research_institute_required: bool = False
    source_files: List[str] = field(default_factory=list)
    extraction_notes: List[str] = field(default_factory=list)
    fields_extracted: int = 0
    sme_inferred: bool = False
    needs_manual_review: bool = False
    manual_review_reasons: List[str] = field(default_factory=list)
    trl: Optional[TRLExtraction] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Criterion:
    """One met or failed eligibility criterion."""
    message: str
    severity: CriterionSeverity = "HARD"


@dataclass
class TRLScoreDetail:
    """How the TRL dimension was scored."""
    org_trl: int
    min_trl: Optional[int]
    max_trl: Optional[int]
    confidence: TRLConfidence
    weight: float
    raw_score: int
    score: int
    within_range: bool
    distance: int
    reason: str


@dataclass
class ScoreBreakdown:
    """Per-dimension points. Maxima sum to 100."""
    industry: int = 0  # 0-25
    trl: int = 0  # 0-20
    certifications: int = 0  # 0-20
    budget: int = 0  # 0-15
    experience: int = 0  # 0-10
    deadline: int = 0  # 0-5
    stage: int = 0  # 0-5

    @property
    def total(self) -> int:
        return sum(self.as_dict().values())

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class MatchScore:
    """Result of scoring one organization against one program."""
    organization_id: str
    program_id: str
    total_score: int
    breakdown: ScoreBreakdown
    eligibility_level: EligibilityLevel
    met_criteria: List[str] = field(default_factory=list)
    failed_criteria: List[Criterion] = field(default_factory=list)
    trl_detail: Optional[TRLScoreDetail] = None
    needs_manual_review: bool = False
    reasons: List[str] = field(default_factory=list)

    @property
    def hard_failures(self) -> List[Criterion]:
        return [c for c in self.failed_criteria if c.severity == "HARD"]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Explanation:
    """Natural-language rendering of a MatchScore."""
    summary: str
    reasons: List[str]
    cautions: str
    recommendation: str
    cached: bool = False
    cost: float = 0.0  # KRW
    response_time_ms: int = 0
    usage: Dict[str, int] = field(default_factory=dict)
    program_status: ProgramStatus = "ACTIVE"
    fallback_reason: Optional[str] = None
    consistency_violations: List[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OrganizationSummary:
    """What the explanation prompt needs to know about an organization."""
    id: str
    name: str
    industry: str
    trl_level: int
    revenue: Optional[int] = None
    employee_count: Optional[int] = None
    certifications: List[str] = field(default_factory=list)
    rd_experience_years: int = 0

    @classmethod
    def from_organization(cls, org: Organization) -> "OrganizationSummary":
        return cls(
            id=org.id,
            name=org.name,
            industry=org.industry_sector,
            trl_level=org.trl_level,
            revenue=org.revenue,
            employee_count=org.employee_count,
            certifications=list(org.certifications),
            rd_experience_years=org.rd_experience_years,
        )


@dataclass
class ProgramSummary:
    """What the explanation prompt needs to know about a program."""
    id: str
    title: str
    agency: str = ""
    budget_ceiling: Optional[int] = None
    min_trl: Optional[int] = None
    max_trl: Optional[int] = None
    industry_tags: List[str] = field(default_factory=list)
    deadline: Optional[date] = None
    status: ProgramStatus = "ACTIVE"
    requirements: List[str] = field(default_factory=list)

    @classmethod
    def from_program(
        cls,
        program: FundingProgram,
        eligibility: Optional[EligibilityVerification] = None,
    ) -> "ProgramSummary":
        requirements = list(eligibility.required_certifications) if eligibility else []
        return cls(
            id=program.id,
            title=program.title,
            agency=program.agency,
            budget_ceiling=program.budget_ceiling,
            min_trl=program.min_trl,
            max_trl=program.max_trl,
            industry_tags=list(program.industry_tags),
            deadline=program.deadline,
            status=program.status,
            requirements=requirements,
        )
