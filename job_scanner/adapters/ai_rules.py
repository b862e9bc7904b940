from __future__ import annotations

import re
from typing import Optional

from job_scanner.core.errors import ExtractionIncomplete
from job_scanner.core.interfaces import AIProvider
from job_scanner.core.models import EmailItem, ExtractionResult
from job_scanner.core.prompts import (
    ATS_DOMAINS,
    CONFIRMATION_PHRASES,
    has_strong_rejection,
    searchable_text,
)


COMPANY_PATTERNS = [
    r"[Tt]hank(?:s| you) for applying (?:to|at|with) ([A-Z][\w&.,'\- ]{1,60}?)(?:[!.]|\s+for\b|$)",
    r"[Yy]our application (?:to|at|with) ([A-Z][\w&.,'\- ]{1,60}?)(?:[!.]|\s+for\b|\s+has\b|$)",
    r"[Tt]hank(?:s| you) for your interest in ([A-Z][\w&.,'\- ]{1,60}?)(?:[!.]|\s+and\b|$)",
    r"\b[Aa]t ([A-Z][\w&'\-]+(?: [A-Z][\w&'\-]+){0,3})",
]

POSITION_PATTERNS = [
    r"\bfor the ([\w /&,+.#()\-]{2,90}?) (?:position|role)\b",
    r"your application for (?:the )?([\w /&,+.#()\-]{2,90}?)(?: position| role)?(?: at\b|[.!]|$)",
    r"\b(?:position|role|job title)\s*[:\-]\s*([^\n\r]{2,90})",
]

_TRAILING = " \t\r\n-:;,.!"


def _first_match(patterns: list[str], text: str, flags: int = 0) -> Optional[str]:
    for pattern in patterns:
        for line in text.splitlines() or [text]:
            matched = re.search(pattern, line, flags=flags)
            if matched:
                value = re.sub(r"\s+", " ", matched.group(1)).strip(_TRAILING)
                if value:
                    return value
    return None


def _company_from_sender(sender: str) -> Optional[str]:
    matched = re.search(r"@([\w.\-]+)", sender)
    if not matched:
        return None
    domain = matched.group(1).lower()
    if any(domain == ats or domain.endswith("." + ats) for ats in ATS_DOMAINS):
        return None
    parts = domain.split(".")
    if len(parts) < 2:
        return None
    return parts[-2].capitalize()


class RuleBasedAI(AIProvider):
    """Keyword classifier and regex extractor. Needs no credential."""

    def classify(self, item: EmailItem) -> bool:
        if has_strong_rejection(item):
            return False
        text = searchable_text(item)
        if any(phrase in text for phrase in CONFIRMATION_PHRASES):
            return True
        sender = item.sender.lower()
        from_ats = any(domain in sender for domain in ATS_DOMAINS)
        return from_ats and "application" in text

    def extract(self, item: EmailItem) -> ExtractionResult:
        text = f"{item.subject}\n{item.body}"
        company = _first_match(COMPANY_PATTERNS, text) or _company_from_sender(item.sender)
        position = _first_match(POSITION_PATTERNS, text, flags=re.IGNORECASE)
        result = ExtractionResult(
            company=company,
            position=position,
            raw={"strategy": "rule_based"},
        )
        if not result.is_complete:
            raise ExtractionIncomplete("Could not extract company or position from email")
        return result
