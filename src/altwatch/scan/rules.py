from __future__ import annotations

import re

from ..models import (
    SEVERITY_ERROR,
    SEVERITY_OK,
    SEVERITY_RANK,
    SEVERITY_WARNING,
    RuleConfig,
    Verdict,
)

ISSUE_MISSING_ALT = "missing_alt"
ISSUE_TOO_SHORT = "alt_too_short"
ISSUE_FILENAME = "alt_looks_like_filename"
ISSUE_GENERIC = "alt_generic"

ISSUE_LABELS = {
    ISSUE_MISSING_ALT: "Missing alt text",
    ISSUE_TOO_SHORT: "Alt text too short",
    ISSUE_FILENAME: "Alt looks like a filename",
    ISSUE_GENERIC: "Alt is too generic",
}

_FILENAME_PATTERNS = (
    re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)$", re.IGNORECASE),
    re.compile(r"^(img|dsc|pxl|photo|screen)[-_ ]?\d{2,}", re.IGNORECASE),
    re.compile(r"^[a-f0-9]{16,}$", re.IGNORECASE),
)


def evaluate(alt_trimmed: str, rules: RuleConfig) -> Verdict:
    """Judge one already-trimmed alt text.

    An empty value only ever reports ``missing_alt``. Otherwise the length,
    filename and generic-word checks run in that order and their tags
    accumulate; ``matched_rule`` is the first tag that fired.
    """
    if alt_trimmed == "":
        severity = SEVERITY_ERROR if rules.missing_alt_is_error else SEVERITY_WARNING
        return Verdict(severity=severity, issues=[ISSUE_MISSING_ALT], matched_rule=ISSUE_MISSING_ALT)

    severity = SEVERITY_OK
    issues: list[str] = []

    if len(alt_trimmed) < rules.min_alt_length:
        severity = max_severity(severity, SEVERITY_WARNING)
        issues.append(ISSUE_TOO_SHORT)
    if rules.detect_filename_like_alt and looks_like_filename(alt_trimmed):
        severity = max_severity(severity, SEVERITY_WARNING)
        issues.append(ISSUE_FILENAME)
    if rules.generic_words and is_generic(alt_trimmed, rules.generic_words):
        severity = max_severity(severity, SEVERITY_WARNING)
        issues.append(ISSUE_GENERIC)

    return Verdict(severity=severity, issues=issues, matched_rule=issues[0] if issues else "")


def looks_like_filename(alt: str) -> bool:
    value = alt.strip().lower()
    return any(pattern.search(value) for pattern in _FILENAME_PATTERNS)


def is_generic(alt: str, generic_words: frozenset[str]) -> bool:
    value = alt.strip().lower()
    return any(value == word.strip().lower() for word in generic_words)


def max_severity(current: str, candidate: str) -> str:
    if SEVERITY_RANK.get(candidate, 0) > SEVERITY_RANK.get(current, 0):
        return candidate
    return current


def issue_label(tag: str) -> str:
    return ISSUE_LABELS.get(tag, tag)
