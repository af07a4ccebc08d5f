"""
Section locator for eligibility-relevant spans of announcement text.

Korean announcements rarely keep clean heading structure once extracted from
HWP/PDF, so headers are searched anywhere in the text (whitespace between
syllables allowed) and a fixed-length window after each header is taken as
the section body.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from fundmatch.core.config import settings

logger = logging.getLogger(__name__)


# (header keyword, English label)
SECTION_HEADERS: List[Tuple[str, str]] = [
    ("지원대상", "support target"),
    ("신청자격", "application qualification"),
    ("신청요건", "application requirements"),
    ("참여요건", "participation requirements"),
    ("참여자격", "participation qualification"),
    ("지원요건", "support requirements"),
]


def _header_pattern(keyword: str) -> "re.Pattern":
    return re.compile(r"\s*".join(re.escape(ch) for ch in keyword))


_HEADER_PATTERNS = [(keyword, label, _header_pattern(keyword)) for keyword, label in SECTION_HEADERS]


@dataclass
class SectionSpan:
    """A window of text following an eligibility header (or the whole text)."""
    start: int
    end: int
    text: str
    header: Optional[str] = None  # Korean keyword, None for the unlabeled fallback span
    label: Optional[str] = None


@dataclass
class SectionLocation:
    """Located spans, ordered by document position."""
    spans: List[SectionSpan] = field(default_factory=list)
    structured: bool = False  # False = no header found, spans[0] is the whole text
    source_text: str = field(default="", repr=False)

    @property
    def headers(self) -> List[str]:
        return [span.header for span in self.spans if span.header]

    @property
    def combined_text(self) -> str:
        """
        Concatenated span text for the extractors.

        Windows of nearby headers overlap; overlapping ranges are merged so the
        same sentence is not fed to the extractors twice.
        """
        if not self.structured:
            return "\n".join(span.text for span in self.spans)

        merged: List[List[int]] = []
        for span in self.spans:
            if merged and span.start <= merged[-1][1]:
                merged[-1][1] = max(merged[-1][1], span.end)
            else:
                merged.append([span.start, span.end])
        return "\n".join(self.source_text[start:end] for start, end in merged)


def locate_sections(text: Optional[str], window: Optional[int] = None) -> SectionLocation:
    """
    Find eligibility sections in raw text.

    Every occurrence of every header yields a span covering the header and the
    ``window`` characters after it. With no header at all, the whole text is
    returned as a single unlabeled span. Never raises.
    """
    text = text or ""
    window = window or settings.SECTION_WINDOW_CHARS

    spans: List[SectionSpan] = []
    for keyword, label, pattern in _HEADER_PATTERNS:
        for match in pattern.finditer(text):
            start = match.start()
            end = min(len(text), match.end() + window)
            spans.append(SectionSpan(start=start, end=end, text=text[start:end], header=keyword, label=label))

    if not spans:
        logger.debug("No eligibility section header found, using full text")
        return SectionLocation(
            spans=[SectionSpan(start=0, end=len(text), text=text)],
            structured=False,
            source_text=text,
        )

    spans.sort(key=lambda span: (span.start, span.header))
    return SectionLocation(spans=spans, structured=True, source_text=text)
