"""
Eligibility Rule Registry - Declarative Patterns for Korean Announcement Text

Every pattern the constraint extractors use lives here as data: a named
ExtractionRule tagged with the eligibility dimension it feeds and the kind of
requirement it expresses. Extractors only iterate rules; adding a pattern
means registering a rule, not editing extractor code.

Korean government announcements are narrative prose that frequently drops
whitespace between tokens ("벤처기업확인서보유"), so patterns join tokens with
\\s* and accept descriptive verbs (보유, 인정, 확인) as well as explicit markers
(필수, 요구).
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Literal, Optional, Tuple


# Type aliases
Dimension = Literal[
    "certification",
    "employees",
    "revenue",
    "investment",
    "operating_years",
    "research_institute",
    "trl",
]
RuleKind = Literal["required", "preferred", "min", "max", "range", "fallback", "flag", "explicit"]


@dataclass(frozen=True)
class ExtractionRule:
    """A named pattern feeding one eligibility dimension."""
    name: str
    dimension: Dimension
    kind: RuleKind
    pattern: str
    label: Optional[str] = None  # Certification name, for certification rules
    value: Optional[int] = None  # Fixed value, for fallback tables
    adjust: int = 0  # Added to the captured number ("50인 미만" -> 49)

    @property
    def regex(self) -> "re.Pattern":
        return _compile(self.pattern)

    def search(self, text: str) -> Optional["re.Match"]:
        return self.regex.search(text)


@lru_cache(maxsize=None)
def _compile(pattern: str) -> "re.Pattern":
    return re.compile(pattern, re.IGNORECASE)


# ==================== CERTIFICATION CATALOGUE ====================

@dataclass(frozen=True)
class CertificationEntry:
    """A certification the extractor recognizes."""
    name: str  # Display name used in extracted lists
    code: str  # Canonical code used for comparison
    pattern: str  # Regex for the certification noun phrase
    aliases: Tuple[str, ...] = ()


CERTIFICATION_CATALOGUE: List[CertificationEntry] = [
    CertificationEntry("벤처기업", "VENTURE", r"벤처\s*기업(?:\s*확인서)?", ("벤처기업확인", "벤처인증", "VENTURE")),
    CertificationEntry("INNO-BIZ", "INNO_BIZ", r"(?:INNO-?\s*BIZ|이노\s*비즈)", ("INNOBIZ", "이노비즈", "INNO_BIZ")),
    CertificationEntry("메인비즈", "MAIN_BIZ", r"(?:메인\s*비즈|MAIN-?\s*BIZ)", ("MAINBIZ", "MAIN_BIZ")),
    CertificationEntry("연구개발전담부서", "RDC", r"연구\s*(?:개발\s*)?전담\s*부서", ("연구전담부서", "RDC")),
    CertificationEntry("기업부설연구소", "DCP", r"기업\s*부설\s*연구소", ("부설연구소", "DCP")),
    CertificationEntry("중소기업", "SME", r"중소\s*기업(?:\s*확인서)?", ("중소기업확인", "SME")),
    CertificationEntry("직접생산확인", "DIRECT_PRODUCTION", r"직접\s*생산\s*확인(?:\s*증명)?(?:서)?", ("직접생산", "DIRECT_PRODUCTION")),
    CertificationEntry("ISO 인증", "ISO", r"ISO\s*\d{4,5}", ("ISO9001", "ISO14001", "ISO27001", "ISO")),
    CertificationEntry("ISMS-P", "ISMS_P", r"ISMS\s*-?\s*P", ("ISMSP", "ISMS_P")),
]

_CODE_BY_ALIAS: Dict[str, str] = {}


def _alias_key(name: str) -> str:
    return re.sub(r"[\s\-_·]", "", name).upper()


def _index_catalogue() -> None:
    _CODE_BY_ALIAS.clear()
    for entry in CERTIFICATION_CATALOGUE:
        for alias in (entry.name, entry.code) + entry.aliases:
            _CODE_BY_ALIAS[_alias_key(alias)] = entry.code


def normalize_certification(name: str) -> str:
    """
    Map a certification name or alias to its canonical code.

    Unknown names normalize to their whitespace/hyphen-free uppercase form, so
    "ISMS-P" and "isms p" compare equal even without a catalogue entry.
    """
    key = _alias_key(name)
    if key in _CODE_BY_ALIAS:
        return _CODE_BY_ALIAS[key]
    if key.startswith("ISO") and key[3:].isdigit():
        return "ISO"
    return key


_index_catalogue()


# ==================== VERB VOCABULARY ====================

MANDATORY_VERBS = r"인증|인정|확인|보유|필수|요구|필요|한정|해당|설치|지정|등록"
PREFERENCE_VERBS = r"우대|가점|가산점"
PARTICLES = r"(?:[은는이가을를의에]|으로|로)?"
# Preference verb within the same sentence turns a "required" hit into "preferred"
_NOT_PREFERRED = r"(?![^.\n]{0,20}(?:" + PREFERENCE_VERBS + r"))"


def _certification_rules() -> List[ExtractionRule]:
    rules = []
    for entry in CERTIFICATION_CATALOGUE:
        rules.append(ExtractionRule(
            name=f"cert_required_{entry.code.lower()}",
            dimension="certification",
            kind="required",
            pattern=entry.pattern + r"\s*" + PARTICLES + r"\s*(?:" + MANDATORY_VERBS + r")" + _NOT_PREFERRED,
            label=entry.name,
        ))
        rules.append(ExtractionRule(
            name=f"cert_preferred_{entry.code.lower()}",
            dimension="certification",
            kind="preferred",
            pattern=entry.pattern + r"[^.\n]{0,20}?(?:" + PREFERENCE_VERBS + r")",
            label=entry.name,
        ))
    return rules


# ==================== RULE TABLE ====================

_AMOUNT = r"(\d+(?:,\d{3})*)"
_HEADCOUNT_NOUN = r"(?:상시\s*)?(?:직원|종업원|근로자|임직원|고용\s*인원)"

RULES: List[ExtractionRule] = _certification_rules() + [
    # Generic "SME is the eligible target" co-occurrence (flagged in notes)
    ExtractionRule(
        name="cert_fallback_sme_target",
        dimension="certification",
        kind="fallback",
        pattern=r"중소\s*기업[^.\n]{0,50}?(?:지원\s*대상|신청\s*자격|대상)"
                r"|(?:지원\s*대상|신청\s*자격|대상)[^.\n]{0,50}?중소\s*기업",
        label="중소기업",
    ),

    # Headcount
    ExtractionRule("employees_min", "employees", "min",
                   _HEADCOUNT_NOUN + r"\s*(?:수|규모)?\s*[은는이가]?\s*(\d+)\s*(?:명|인)?\s*이상"),
    ExtractionRule("employees_max", "employees", "max",
                   _HEADCOUNT_NOUN + r"\s*(?:수|규모)?\s*[은는이가]?\s*(\d+)\s*(?:명|인)?\s*이하"),
    ExtractionRule("employees_max_exclusive", "employees", "max",
                   _HEADCOUNT_NOUN + r"\s*(?:수|규모)?\s*[은는이가]?\s*(\d+)\s*(?:명|인)?\s*미만", adjust=-1),
    ExtractionRule("employees_range", "employees", "range",
                   r"(\d+)\s*(?:명|인)?\s*(?:~|∼|이상)\s*(\d+)\s*(?:명|인)\s*(?:이하)?"),

    # Revenue (억 = 100,000,000 KRW)
    ExtractionRule("revenue_min", "revenue", "min",
                   r"매출\s*(?:액|규모)?\s*[은는이가]?\s*" + _AMOUNT + r"\s*억\s*원?\s*이상"),
    ExtractionRule("revenue_max", "revenue", "max",
                   r"매출\s*(?:액|규모)?\s*[은는이가]?\s*" + _AMOUNT + r"\s*억\s*원?\s*(?:이하|미만)"),

    # Investment: explicit amount first, then common round amounts
    ExtractionRule("investment_explicit", "investment", "min",
                   r"(?:투자\s*유치|투자금|투자\s*실적)\s*(?:금액|액|규모)?\s*[은는이가]?\s*" + _AMOUNT + r"\s*억"),
    ExtractionRule("investment_round_2", "investment", "fallback",
                   r"(?<!\d)2\s*억\s*원?\s*이상\s*(?:의\s*)?투자", value=200_000_000),
    ExtractionRule("investment_round_5", "investment", "fallback",
                   r"(?<!\d)5\s*억\s*원?\s*이상\s*(?:의\s*)?투자", value=500_000_000),
    ExtractionRule("investment_round_10", "investment", "fallback",
                   r"(?<!\d)10\s*억\s*원?\s*이상\s*(?:의\s*)?투자", value=1_000_000_000),

    # Operating years (business age)
    ExtractionRule("operating_years_min", "operating_years", "min",
                   r"(?:업력|창업|설립)\s*(?:후\s*)?(\d+)\s*년\s*이상"),
    ExtractionRule("operating_years_max", "operating_years", "max",
                   r"(?:업력|창업|설립)\s*(?:후\s*)?(\d+)\s*년\s*(?:이내|이하)"),
    ExtractionRule("operating_years_max_exclusive", "operating_years", "max",
                   r"(?:업력|창업|설립)\s*(?:후\s*)?(\d+)\s*년\s*미만", adjust=-1),
    # "7년 이내 창업기업" startup-program convention
    ExtractionRule("operating_years_startup_convention", "operating_years", "max",
                   r"(\d+)\s*년\s*이내\s*(?:의\s*)?(?:창업|스타트업)"),

    # Research institute requirement
    ExtractionRule("research_institute_verb", "research_institute", "flag",
                   r"(?:기업\s*부설\s*연구소|연구\s*(?:개발\s*)?전담\s*부서)\s*[를을이가의에]?\s*"
                   r"(?:(?:또는|및|나)\s*(?:기업\s*부설\s*연구소|연구\s*(?:개발\s*)?전담\s*부서)\s*[를을이가의에]?\s*)?"
                   r"(?:보유|인정|인증|설치|운영|필수|요구|필요)" + _NOT_PREFERRED),
    ExtractionRule("research_institute_possession", "research_institute", "flag",
                   r"연구소\s*보유\s*(?:필수|기업)" + _NOT_PREFERRED),

    # TRL stated explicitly
    ExtractionRule("trl_explicit_range", "trl", "explicit",
                   r"TRL\s*(\d)\s*(?:단계)?\s*[-~∼]\s*(?:TRL\s*)?(\d)"),
    ExtractionRule("trl_explicit_korean_range", "trl", "explicit",
                   r"기술\s*성숙도\s*(\d)\s*(?:단계)?\s*[-~∼]\s*(\d)"),
    ExtractionRule("trl_explicit_min", "trl", "min",
                   r"(?:TRL|기술\s*성숙도)\s*(\d)\s*(?:단계)?\s*이상"),
]


# TRL stage keywords used when no explicit TRL is stated
TRL_STAGE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "BASIC": ("기초연구", "원천기술", "이론연구", "기본원리", "개념정립"),
    "APPLIED": ("응용연구", "개발연구", "시제품", "프로토타입", "실험실검증", "파일럿테스트", "개념실증", "POC"),
    "COMMERCIALIZATION": ("실용화", "사업화", "상용화", "시장진입", "양산", "제품화", "실증"),
}

TRL_STAGE_RANGES: Dict[str, Tuple[int, int]] = {
    "BASIC": (1, 3),
    "APPLIED": (4, 6),
    "COMMERCIALIZATION": (7, 9),
}

TRL_STAGE_NAMES_KO: Dict[str, str] = {
    "BASIC": "기초연구",
    "APPLIED": "응용연구/개발",
    "COMMERCIALIZATION": "상용화/사업화",
}


def rules_for(dimension: Dimension, kind: Optional[RuleKind] = None) -> List[ExtractionRule]:
    """Rules for a dimension (optionally one kind), in registration order."""
    return [
        rule for rule in RULES
        if rule.dimension == dimension and (kind is None or rule.kind == kind)
    ]


def register_rule(rule: ExtractionRule) -> None:
    """Append a rule to the registry. Names must be unique."""
    if any(existing.name == rule.name for existing in RULES):
        raise ValueError(f"Extraction rule already registered: {rule.name}")
    RULES.append(rule)


def unregister_rule(name: str) -> None:
    """Remove a rule by name (no-op if absent)."""
    RULES[:] = [rule for rule in RULES if rule.name != name]
