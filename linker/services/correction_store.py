"""
Correction Store
================
Learning memory of the matcher: an append-only log of user corrections and an
append-only log of every successful match.

Learned lookups:
    find_similar_match   — single-match mode; newest correction whose bug text
                           scores above 0.6 keyword similarity wins.
    find_similar_matches — multi-match mode; threshold 0.5, corrections first
                           (0.85 + 0.15 * score) then plain match records
                           (0.80 + 0.15 * score), one entry per test id.

Corrections that a later CORRECT batch for the same bug superseded are never
proposed, nor is the model match of a bug that has been corrected at all.

Both lookups gate on issue category: a stored bug whose category is neither
``unknown`` nor the incoming bug's category is never proposed, whatever the
keyword overlap.

Writes are no-ops when learning is disabled. Reads always work, so a store
built with learning off still answers statistics and bug-key lookups.
"""
import logging
from typing import Dict, Iterable, Iterator, List, Optional

from linker.core import config
from linker.core.constants import (
    CORRECTION_CONFIDENCE_BASE,
    LEARNED_CONFIDENCE_SPAN,
    MATCH_RECORD_CONFIDENCE_BASE,
    MULTI_LEARNED_THRESHOLD,
    SINGLE_LEARNED_THRESHOLD,
)
from linker.models.bug_report import BugReport
from linker.models.match import Correction, Match, MatchRecord
from linker.models.test_case import LinkedTest
from linker.parser.classification import IssueCategory, categories_compatible, classify_issue
from linker.parser.keywords import extract_keywords, similarity
from linker.services.ledger import Ledger, SqliteLedger

logger = logging.getLogger(__name__)


def categorize(bug: BugReport) -> IssueCategory:
    """Category of a bug: the explicit hint when it classifies, else the text."""
    if bug.category:
        hinted = classify_issue(bug.category)
        if hinted is not IssueCategory.UNKNOWN:
            return hinted
    return classify_issue(bug.text)


def _learned_confidence(base: float, score: float) -> float:
    return min(1.0, base + LEARNED_CONFIDENCE_SPAN * score)


class CorrectionStore:
    """
    Facade over the two ledgers.

    Parameters
    ----------
    corrections : Ledger[Correction]
    matches : Ledger[MatchRecord]
    learning_enabled : bool
        When False, ``store_match`` / ``store_correction`` only log.
    """

    def __init__(
        self,
        corrections: Ledger[Correction],
        matches: Ledger[MatchRecord],
        learning_enabled: bool = config.LEARNING_ENABLED,
    ) -> None:
        self.corrections = corrections
        self.matches = matches
        self.learning_enabled = learning_enabled

    @classmethod
    def from_path(cls, path: str = config.LEARNING_DB_PATH, **kwargs) -> "CorrectionStore":
        return cls(
            corrections=SqliteLedger(path, "corrections", Correction),
            matches=SqliteLedger(path, "matches", MatchRecord),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def store_match(self, bug: BugReport, match: Match) -> None:
        if not self.learning_enabled:
            logger.info("AI learning disabled, skipping match storage")
            return
        record = MatchRecord(bug=bug, match=match, category=categorize(bug).value)
        self.matches.append(record, key=bug.key)
        logger.info("Match stored for %s -> test %s", bug.key, match.test_id)

    def store_correction(
        self,
        bug: BugReport,
        correct_test_id: str,
        correct_case_id: str,
        correct_title: str = "",
        replaces_previous: bool = False,
    ) -> None:
        if not self.learning_enabled:
            logger.info("AI learning disabled, skipping correction storage")
            return
        correction = Correction(
            bug=bug,
            correct_test_id=str(correct_test_id),
            correct_case_id=str(correct_case_id),
            correct_title=correct_title,
            category=categorize(bug).value,
            replaces_previous=replaces_previous,
        )
        self.corrections.append(correction, key=bug.key)
        logger.info("Correction stored for %s -> case C%s", bug.key, correct_case_id)

    # ------------------------------------------------------------------
    # Learned lookups
    # ------------------------------------------------------------------
    def find_similar_match(self, bug: BugReport) -> Optional[Match]:
        """Newest correction above the single-mode threshold, or None."""
        incoming = categorize(bug)
        bug_keywords = extract_keywords(bug.text)

        for correction in self._live_corrections():
            if not categories_compatible(correction.category, incoming):
                continue
            score = similarity(bug_keywords, extract_keywords(correction.bug.text))
            if score > SINGLE_LEARNED_THRESHOLD:
                logger.info(
                    "Learned match for %s from %s (similarity %.2f)",
                    bug.key, correction.bug.key, score,
                )
                return Match(
                    test_id=correction.correct_test_id,
                    case_id=correction.correct_case_id,
                    title=correction.correct_title,
                    confidence=_learned_confidence(CORRECTION_CONFIDENCE_BASE, score),
                    reasoning=f'Similar to previous bug: "{correction.bug.summary}"',
                    learned=True,
                )
        return None

    def find_similar_matches(self, bug: BugReport) -> List[Match]:
        """All learned candidates above the multi-mode threshold, deduplicated by test id."""
        incoming = categorize(bug)
        bug_keywords = extract_keywords(bug.text)
        found: Dict[str, Match] = {}
        corrected_keys = set()

        for correction in self._live_corrections():
            corrected_keys.add(correction.bug.key)
            if correction.correct_test_id in found:
                continue
            if not categories_compatible(correction.category, incoming):
                continue
            score = similarity(bug_keywords, extract_keywords(correction.bug.text))
            if score > MULTI_LEARNED_THRESHOLD:
                found[correction.correct_test_id] = Match(
                    test_id=correction.correct_test_id,
                    case_id=correction.correct_case_id,
                    title=correction.correct_title,
                    confidence=_learned_confidence(CORRECTION_CONFIDENCE_BASE, score),
                    reasoning=f'Corrected for similar bug {correction.bug.key}: "{correction.bug.summary}"',
                    learned=True,
                )

        for record in self.matches.scan_newest_first():
            if record.match.test_id in found or record.bug.key == bug.key:
                continue
            # A corrected bug's model match was overridden
            if record.bug.key in corrected_keys:
                continue
            if not categories_compatible(record.category, incoming):
                continue
            score = similarity(bug_keywords, extract_keywords(record.bug.text))
            if score > MULTI_LEARNED_THRESHOLD:
                found[record.match.test_id] = Match(
                    test_id=record.match.test_id,
                    case_id=record.match.case_id,
                    title=record.match.title,
                    confidence=_learned_confidence(MATCH_RECORD_CONFIDENCE_BASE, score),
                    reasoning=f'Matched for similar bug {record.bug.key}: "{record.bug.summary}"',
                    learned=True,
                )

        if found:
            logger.info("Found %d learned match(es) for %s", len(found), bug.key)
        return list(found.values())

    # ------------------------------------------------------------------
    # Bug-key lookups
    # ------------------------------------------------------------------
    def get_test_cases_by_bug_key(self, bug_key: str) -> List[LinkedTest]:
        """
        Tests historically linked to *bug_key*, most recent first.

        Corrections win over match records. Scanning corrections stops after the
        first record of the newest CORRECT batch, since that batch replaced every
        earlier link.
        """
        linked = _distinct(self._corrected_tests(bug_key))
        if linked:
            return linked

        return _distinct(
            LinkedTest(
                test_id=record.match.test_id,
                case_id=record.match.case_id,
                title=record.match.title,
            )
            for record in self.matches.scan_newest_first(key=bug_key)
        )

    def _live_corrections(self) -> Iterator[Correction]:
        """All corrections newest first, minus those a later CORRECT batch superseded."""
        superseded = set()
        for correction in self.corrections.scan_newest_first():
            if correction.bug.key in superseded:
                continue
            if correction.replaces_previous:
                superseded.add(correction.bug.key)
            yield correction

    def _corrected_tests(self, bug_key: str) -> Iterable[LinkedTest]:
        for correction in self.corrections.scan_newest_first(key=bug_key):
            yield LinkedTest(
                test_id=correction.correct_test_id,
                case_id=correction.correct_case_id,
                title=correction.correct_title,
            )
            if correction.replaces_previous:
                return

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def get_statistics(self) -> dict:
        total_matches = self.matches.count()
        total_corrections = self.corrections.count()
        last_match = self.matches.latest()
        last_correction = self.corrections.latest()

        if total_matches > 0:
            correction_rate = f"{total_corrections / total_matches * 100:.2f}%"
        else:
            correction_rate = "0%"

        return {
            "total_matches": total_matches,
            "total_corrections": total_corrections,
            "correction_rate": correction_rate,
            "last_match": last_match.stored_at.isoformat() if last_match else None,
            "last_correction": last_correction.corrected_at.isoformat() if last_correction else None,
        }


def _distinct(tests: Iterable[LinkedTest]) -> List[LinkedTest]:
    seen = set()
    result: List[LinkedTest] = []
    for test in tests:
        if test.test_id in seen:
            continue
        seen.add(test.test_id)
        result.append(test)
    return result
