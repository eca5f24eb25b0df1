"""
Matching Engine
===============
Turns one bug report plus a run's candidate test cases into one or more
matches.

Pipeline (per call):
    1. Section pre-filter (optional): a single remaining candidate is
       auto-matched with confidence 1.0, nothing else runs
    2. Learned lookup in the correction store, used verbatim when every
       learned test id is a current candidate
    3. Reasoning model, bounded by MATCH_TIMEOUT_SECONDS
    4. Validation: every returned test id must be one of the candidates the
       model was shown; ids are never coerced to a best guess
    5. Persistence of each validated model match as a MatchRecord

Modes:
    Single-match and multi-match are separate strategy objects chosen once at
    construction (ENABLE_MULTI_MATCH). They differ in learned lookup, prompt,
    and response validation; the pipeline above is shared.

Confidence:
    is_confident_match() compares against AI_CONFIDENCE_THRESHOLD. Matches
    below it are still returned; the caller links them and asks for
    verification.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from linker.agents.section_filter import SectionLookup, prefilter
from linker.core import config
from linker.core.errors import (
    InvalidModelOutput, MatchingTimeout, NoCandidates, NoValidMatches,
)
from linker.llm.prompts import SYSTEM_PROMPT, build_multi_match_prompt, build_single_match_prompt
from linker.models.bug_report import BugReport
from linker.models.match import Match
from linker.models.test_case import TestCaseCandidate
from linker.services.correction_store import CorrectionStore

logger = logging.getLogger(__name__)

REASONING_SEPARATOR = " | "


# ---------------------------------------------------------------------------
# Response validation helpers
# ---------------------------------------------------------------------------
def _to_match(entry: Any, by_id: Dict[str, TestCaseCandidate]) -> Match:
    """
    Validate one model entry against the candidate index.

    Raises
    ------
    InvalidModelOutput
        Missing test_id/confidence, unknown test_id, or non-numeric confidence.
    """
    if not isinstance(entry, dict):
        raise InvalidModelOutput(f"Match entry is not an object: {entry!r}")

    missing = [f for f in ("test_id", "confidence") if entry.get(f) in (None, "")]
    if missing:
        raise InvalidModelOutput(f"Model response missing required fields: {', '.join(missing)}")

    test_id = str(entry["test_id"]).strip()
    candidate = by_id.get(test_id)
    if candidate is None:
        raise InvalidModelOutput(f"Model returned unknown test id {test_id}")

    try:
        confidence = float(entry["confidence"])
    except (TypeError, ValueError):
        raise InvalidModelOutput(f"confidence is not a number: {entry['confidence']!r}")

    return Match(
        test_id=candidate.test_id,
        case_id=candidate.case_id,
        title=candidate.title,
        confidence=max(0.0, min(1.0, confidence)),
        reasoning=str(entry.get("reasoning") or ""),
    )


def dedupe_by_test_id(matches: List[Match]) -> List[Match]:
    """
    One entry per test id, highest confidence first.

    The kept entry absorbs the distinct reasoning of the dropped duplicates so
    a test that catches two described issues keeps both rationales.
    """
    kept: Dict[str, Match] = {}
    for match in sorted(matches, key=lambda m: m.confidence, reverse=True):
        existing = kept.get(match.test_id)
        if existing is None:
            kept[match.test_id] = match
            continue
        if match.reasoning and match.reasoning not in existing.reasoning:
            kept[match.test_id] = existing.model_copy(
                update={"reasoning": f"{existing.reasoning}{REASONING_SEPARATOR}{match.reasoning}"}
            )
    return list(kept.values())


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------
class MatchStrategy(ABC):
    name = ""

    @abstractmethod
    def find_learned(self, store: CorrectionStore, bug: BugReport, candidate_ids: set) -> List[Match]:
        """Learned matches usable verbatim, or [] to consult the model."""

    @abstractmethod
    def build_prompt(self, bug: BugReport, candidates: List[TestCaseCandidate]) -> str:
        ...

    @abstractmethod
    def parse(self, data: dict, candidates: List[TestCaseCandidate]) -> List[Match]:
        ...


class SingleMatchStrategy(MatchStrategy):
    name = "single"

    def find_learned(self, store, bug, candidate_ids):
        learned = store.find_similar_match(bug)
        if learned is None:
            return []
        if learned.test_id not in candidate_ids:
            logger.warning(
                "Learned match %s for %s is not in this run, consulting the model",
                learned.test_id, bug.key,
            )
            return []
        logger.info("Found similar match in learning data with confidence %.2f", learned.confidence)
        return [learned]

    def build_prompt(self, bug, candidates):
        return build_single_match_prompt(bug, candidates)

    def parse(self, data, candidates):
        by_id = {c.test_id: c for c in candidates}
        entry = data
        # Tolerate a one-element list answer to the single prompt
        if "test_id" not in data and isinstance(data.get("matches"), list) and data["matches"]:
            entry = data["matches"][0]
        match = _to_match(entry, by_id)
        logger.info("AI matched to test %s with confidence %.2f", match.test_id, match.confidence)
        return [match]


class MultiMatchStrategy(MatchStrategy):
    name = "multi"

    def __init__(self, threshold: float = config.MULTI_MATCH_THRESHOLD) -> None:
        self.threshold = threshold

    def find_learned(self, store, bug, candidate_ids):
        learned = store.find_similar_matches(bug)
        if not learned:
            return []
        absent = [m.test_id for m in learned if m.test_id not in candidate_ids]
        if absent:
            logger.info(
                "Discarding %d learned match(es); %s not in this run, consulting the model",
                len(learned), ", ".join(absent),
            )
            return []
        logger.info("Using %d learned match(es) for %s", len(learned), bug.key)
        return learned

    def build_prompt(self, bug, candidates):
        return build_multi_match_prompt(bug, candidates)

    def parse(self, data, candidates):
        raw = data.get("matches")
        if raw is None and "test_id" in data:
            raw = [data]
        if not isinstance(raw, list):
            raise InvalidModelOutput("Model response has no 'matches' list")

        by_id = {c.test_id: c for c in candidates}
        valid: List[Match] = []
        for entry in raw:
            try:
                valid.append(_to_match(entry, by_id))
            except InvalidModelOutput as e:
                logger.warning("Dropping invalid multi-match entry: %s", e.message)

        above = [m for m in valid if m.confidence >= self.threshold]
        matches = dedupe_by_test_id(above)
        logger.info(
            "Multi-match: %d returned, %d valid, %d above %.2f, %d after dedup",
            len(raw), len(valid), len(above), self.threshold, len(matches),
        )
        if not matches:
            raise NoValidMatches(
                f"No valid matches: {len(raw)} returned, {len(valid)} valid, "
                f"{len(above)} at or above threshold {self.threshold}"
            )
        return matches


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
class MatchingEngine:
    """
    Usage:
        engine = MatchingEngine(llm=LLMClient(), store=CorrectionStore.from_path())
        matches = await engine.match(bug, candidates, section_lookup=lookup)
    """

    def __init__(
        self,
        llm,
        store: CorrectionStore,
        multi_match: bool = config.MULTI_MATCH_ENABLED,
        confidence_threshold: float = config.AI_CONFIDENCE_THRESHOLD,
        multi_match_threshold: float = config.MULTI_MATCH_THRESHOLD,
        timeout_seconds: float = config.MATCH_TIMEOUT_SECONDS,
    ) -> None:
        self.llm = llm
        self.store = store
        self.strategy: MatchStrategy = (
            MultiMatchStrategy(multi_match_threshold) if multi_match else SingleMatchStrategy()
        )
        self.confidence_threshold = confidence_threshold
        self.timeout_seconds = timeout_seconds

    @property
    def multi_match(self) -> bool:
        return isinstance(self.strategy, MultiMatchStrategy)

    def is_confident_match(self, match: Match) -> bool:
        return match.confidence >= self.confidence_threshold

    async def match(
        self,
        bug: BugReport,
        candidates: List[TestCaseCandidate],
        section_lookup: Optional[SectionLookup] = None,
    ) -> List[Match]:
        """
        Match *bug* against *candidates*; never returns an empty list.

        Raises
        ------
        NoCandidates, MatchingTimeout, MatchingFailed, InvalidModelOutput, NoValidMatches
        """
        if not candidates:
            raise NoCandidates(f"No test cases to match {bug.key} against")

        logger.info("AI matching bug \"%s\" against %d test cases", bug.summary, len(candidates))

        shown = candidates
        if section_lookup is not None:
            narrowed = await prefilter(bug, candidates, section_lookup)
            if narrowed.auto_match is not None:
                return [narrowed.auto_match]
            shown = narrowed.candidates

        candidate_ids = {c.test_id for c in candidates}
        learned = await asyncio.to_thread(self.strategy.find_learned, self.store, bug, candidate_ids)
        if learned:
            return learned

        matches = self.strategy.parse(await self._ask_model(bug, shown), shown)
        for m in matches:
            await asyncio.to_thread(self.store.store_match, bug, m)
        return matches

    async def _ask_model(self, bug: BugReport, candidates: List[TestCaseCandidate]) -> dict:
        prompt = self.strategy.build_prompt(bug, candidates)
        try:
            return await asyncio.wait_for(
                self.llm.complete(SYSTEM_PROMPT, prompt),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("Reasoning model timed out after %ss for %s", self.timeout_seconds, bug.key)
            raise MatchingTimeout(
                f"AI matching timed out after {self.timeout_seconds:g} seconds"
            ) from None
