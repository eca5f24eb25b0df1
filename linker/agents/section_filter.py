"""
Section Filter
==============
Fast path in front of the matching engine.

Bug titles follow ``tag | category | page ...`` (e.g. "508c | Page Titled |
Home"). The category segment is compared against the run's section names and
the candidate list is narrowed to the matching sections.

Rules:
    - Fail-open: a failing section lookup, or no matching section, keeps the
      full candidate list. Filtering never produces zero candidates when
      candidates exist.
    - Auto-match fires iff exactly one candidate remains after filtering; it
      returns a confidence 1.0 Match and the reasoning model is skipped.
"""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Optional

from linker.core.constants import IGNORED_TITLE_SEGMENTS
from linker.models.bug_report import BugReport
from linker.models.match import Match
from linker.models.test_case import TestCaseCandidate

logger = logging.getLogger(__name__)

SectionLookup = Callable[[], Awaitable[Mapping[str, str]]]

UNCATEGORIZED = "Uncategorized"


@dataclass
class PrefilterResult:
    candidates: List[TestCaseCandidate]
    auto_match: Optional[Match] = None
    category_token: Optional[str] = None
    sections: List[str] = field(default_factory=list)

    @property
    def auto_matched(self) -> bool:
        return self.auto_match is not None


def extract_category_token(title: Optional[str]) -> Optional[str]:
    """Second pipe-delimited segment of a title unless it is a generic word."""
    if not title:
        return None
    parts = [p.strip() for p in title.split("|")]
    if len(parts) < 2 or not parts[1]:
        return None
    if parts[1].lower() in IGNORED_TITLE_SEGMENTS:
        return None
    return parts[1]


def group_by_section(
    candidates: List[TestCaseCandidate], section_names: Mapping[str, str]
) -> Dict[str, List[TestCaseCandidate]]:
    """section name → candidates, in first-seen order."""
    groups: Dict[str, List[TestCaseCandidate]] = {}
    for candidate in candidates:
        if candidate.section_id is None:
            name = UNCATEGORIZED
        else:
            name = section_names.get(candidate.section_id) or f"Section {candidate.section_id}"
        groups.setdefault(name, []).append(candidate)
    return groups


async def filter_by_section(
    candidates: List[TestCaseCandidate],
    category_token: str,
    section_lookup: SectionLookup,
) -> tuple[List[TestCaseCandidate], List[str]]:
    """
    Narrow candidates to sections whose name contains *category_token*.

    Returns
    -------
    (candidates, matched_section_names)
        The unfiltered list and ``[]`` when the lookup fails or nothing matches.
    """
    try:
        section_names = await section_lookup()
        groups = group_by_section(candidates, section_names)
    except Exception as e:  # fail-open on any lookup/grouping failure
        logger.warning("Section lookup failed, using all test cases: %s", e)
        return candidates, []

    logger.info("Grouped %d test cases into %d sections", len(candidates), len(groups))
    token = category_token.lower()
    matched = [name for name in groups if token in name.lower()]
    if not matched:
        logger.warning('No sections match criterion "%s", using all test cases', category_token)
        return candidates, []

    filtered = [c for name in matched for c in groups[name]]
    logger.info(
        "Found %d matching section(s): %s; filtered to %d test cases",
        len(matched), ", ".join(matched), len(filtered),
    )
    return filtered, matched


async def prefilter(
    bug: BugReport,
    candidates: List[TestCaseCandidate],
    section_lookup: SectionLookup,
) -> PrefilterResult:
    """Apply the title/section fast path to one bug."""
    token = extract_category_token(bug.summary)
    if not token:
        logger.info("Could not extract criterion from title, using all test cases")
        return PrefilterResult(candidates=candidates)

    logger.info('Extracted criterion from title: "%s"', token)
    filtered, sections = await filter_by_section(candidates, token, section_lookup)
    result = PrefilterResult(candidates=filtered, category_token=token, sections=sections)

    if sections and len(filtered) == 1:
        only = filtered[0]
        reasoning = f'Auto-matched: Only test case in section "{sections[0]}"'
        logger.info(reasoning)
        result.auto_match = Match(
            test_id=only.test_id,
            case_id=only.case_id,
            title=only.title,
            confidence=1.0,
            reasoning=reasoning,
            auto_matched=True,
        )
    return result
