"""
Classification
==============
Maps accessibility bug text to a coarse issue category.

Allowed Categories:
    focus, title, heading-missing, heading-level, heading-generic, language,
    form, image, table, link, color, unknown

Classification Strategy:
    ORDERED REGEX RULES: the first matching rule wins, so order is significant.
    Heading rules run before the generic "heading" rule and before every other
    topic because heading bugs often mention links, images or focus in passing.
    "Missing" and "wrong level" use disjoint patterns: both talk about
    headings but map to unrelated test cases.

The category is used as a hard gate on learned matches, never as a match by
itself.
"""
import re
from enum import Enum
from typing import Optional


class IssueCategory(str, Enum):
    FOCUS = "focus"
    TITLE = "title"
    HEADING_MISSING = "heading-missing"
    HEADING_LEVEL = "heading-level"
    HEADING_GENERIC = "heading-generic"
    LANGUAGE = "language"
    FORM = "form"
    IMAGE = "image"
    TABLE = "table"
    LINK = "link"
    COLOR = "color"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Heading split patterns
# ---------------------------------------------------------------------------
_HEADING_RE = re.compile(r"\bheading|\bh[1-6]\b", re.I)
HEADING_MISSING_RE = re.compile(r"missing|not provided|not programmatically|not identified", re.I)
HEADING_LEVEL_RE = re.compile(r"incorrect level|wrong level|heading level|h\d.*incorrect", re.I)


# ---------------------------------------------------------------------------
# Topic rules (after headings), first match wins
# ---------------------------------------------------------------------------
# Each entry: (compiled_regex, category)
_TOPIC_RULES: list[tuple[re.Pattern, IssueCategory]] = [
    (re.compile(r"\bfocus|keyboard|tab order|\btabbing", re.I), IssueCategory.FOCUS),
    (re.compile(r"page titled?\b|\btitle element|<title>|page title", re.I), IssueCategory.TITLE),
    (re.compile(r"\blang(uage)?\b|lang attribute", re.I), IssueCategory.LANGUAGE),
    (re.compile(r"\bimage|\bimg\b|alt text|\balt\b|\bicon|\bgraphic", re.I), IssueCategory.IMAGE),
    (re.compile(r"\btable|\bcolumn header|\brow header|\bdata cell", re.I), IssueCategory.TABLE),
    (re.compile(r"\blink|\bhref\b|\banchor", re.I), IssueCategory.LINK),
    (re.compile(r"\bform\b|\binput|\blabel|\bfield|\bcheckbox|\bradio\b|\bdropdown|\bcombobox", re.I), IssueCategory.FORM),
    (re.compile(r"\bcolou?r|\bcontrast", re.I), IssueCategory.COLOR),
]


def _classify_heading(text: str) -> IssueCategory:
    # The two patterns are disjoint; level wins when a bug reports both
    if HEADING_LEVEL_RE.search(text):
        return IssueCategory.HEADING_LEVEL
    if HEADING_MISSING_RE.search(text):
        return IssueCategory.HEADING_MISSING
    return IssueCategory.HEADING_GENERIC


def classify_issue(text: Optional[str]) -> IssueCategory:
    """
    Classify bug text into an IssueCategory.

    Parameters
    ----------
    text : str
        Summary and/or description of the bug.

    Returns
    -------
    IssueCategory
        UNKNOWN when no rule matches or the text is empty.
    """
    if not text:
        return IssueCategory.UNKNOWN

    if _HEADING_RE.search(text):
        return _classify_heading(text)

    for pattern, category in _TOPIC_RULES:
        if pattern.search(text):
            return category

    return IssueCategory.UNKNOWN


def categories_compatible(stored: Optional[str], incoming: IssueCategory) -> bool:
    """True when a stored record may be learned-matched to an incoming bug."""
    if not stored or stored == IssueCategory.UNKNOWN.value:
        return True
    return stored == incoming.value
