"""
Post-hoc checks on generated explanation text.

Each rule is a phrase pattern, a violation kind and the program statuses it
applies to. Violations are reported for logging only; they never block a
response.
"""

import logging
import re
from dataclasses import dataclass
from functools import cached_property
from typing import List, Literal, Optional, Sequence, Tuple

from fundmatch.core.types import ProgramStatus

logger = logging.getLogger(__name__)


ViolationKind = Literal["ACTIVE_APPLICATION_LANGUAGE", "ERROR_LANGUAGE", "ACTION_SOLICITATION"]

ALL_STATUSES: Tuple[str, ...] = ("ACTIVE", "EXPIRED", "ARCHIVED")
CLOSED_STATUSES: Tuple[str, ...] = ("EXPIRED", "ARCHIVED")


@dataclass(frozen=True)
class ConsistencyRule:
    pattern: str
    kind: ViolationKind
    statuses: Tuple[str, ...] = CLOSED_STATUSES

    @cached_property
    def regex(self) -> "re.Pattern[str]":
        return re.compile(self.pattern)


@dataclass(frozen=True)
class ConsistencyViolation:
    kind: ViolationKind
    phrase: str
    pattern: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.phrase}"


DEFAULT_RULES: List[ConsistencyRule] = [
    # Talks about the program as if it were still open
    ConsistencyRule(r"신청\s*가능", "ACTIVE_APPLICATION_LANGUAGE"),
    ConsistencyRule(r"지금\s*(바로\s*)?(신청|지원)", "ACTIVE_APPLICATION_LANGUAGE"),
    ConsistencyRule(r"접수\s*중", "ACTIVE_APPLICATION_LANGUAGE"),
    ConsistencyRule(r"마감\s*(일\s*)?전(에|까지)", "ACTIVE_APPLICATION_LANGUAGE"),
    ConsistencyRule(r"마감까지\s*\d+\s*일", "ACTIVE_APPLICATION_LANGUAGE"),
    # Asks the reader to act on a closed program
    ConsistencyRule(r"신청하세요", "ACTION_SOLICITATION"),
    ConsistencyRule(r"지원하세요", "ACTION_SOLICITATION"),
    ConsistencyRule(r"(신청|지원)하시기\s*바랍니다", "ACTION_SOLICITATION"),
    ConsistencyRule(r"(신청|지원)서를\s*(제출|작성)하", "ACTION_SOLICITATION"),
    # Apologies and failure wording undermine trust regardless of status
    ConsistencyRule(r"시스템\s*오류", "ERROR_LANGUAGE", ALL_STATUSES),
    ConsistencyRule(r"오류가\s*(발생|있)", "ERROR_LANGUAGE", ALL_STATUSES),
    ConsistencyRule(r"죄송", "ERROR_LANGUAGE", ALL_STATUSES),
]


def detect_state_inconsistencies(
    explanation_text: str,
    status: ProgramStatus,
    rules: Optional[Sequence[ConsistencyRule]] = None,
) -> List[ConsistencyViolation]:
    """All rule hits for a status, in rule order. One hit per rule."""
    violations = []
    for rule in DEFAULT_RULES if rules is None else rules:
        if status not in rule.statuses:
            continue
        match = rule.regex.search(explanation_text or "")
        if match:
            violations.append(ConsistencyViolation(rule.kind, match.group(0), rule.pattern))
    return violations


def log_state_inconsistencies(
    violations: Sequence[ConsistencyViolation],
    status: ProgramStatus,
    context: str = "",
) -> None:
    if not violations:
        return
    kinds = ", ".join(sorted({v.kind for v in violations}))
    phrases = ", ".join(f"'{v.phrase}'" for v in violations)
    logger.warning(f"State inconsistency in {status} explanation {context}: {kinds} ({phrases})")
