"""
Matching engine tests.
The reasoning model is an AsyncMock; the correction store is a MagicMock
unless a test needs real learned lookups.
"""
import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from linker.agents.matching_engine import (
    MatchingEngine, MultiMatchStrategy, SingleMatchStrategy, dedupe_by_test_id,
)
from linker.core.errors import (
    InvalidModelOutput, MatchingFailed, MatchingTimeout, NoCandidates, NoValidMatches,
)
from linker.models.bug_report import BugReport
from linker.models.match import Match
from linker.models.test_case import TestCaseCandidate
from linker.services.correction_store import CorrectionStore


BUG = BugReport(
    key="ROLL-1396",
    summary="508c | Page Titled | Home",
    description="Current page title is generic Home instead of describing page purpose.",
)

CANDIDATES = [
    TestCaseCandidate(test_id="31834450", case_id="1001",
                      title="A - There is no meaningful page title in plain language", section_id="1"),
    TestCaseCandidate(test_id="31834451", case_id="1002",
                      title="A - Headings are programmatically identified", section_id="2"),
    TestCaseCandidate(test_id="31834452", case_id="1003",
                      title="AA - Focus is visible", section_id="3"),
]


def _store(learned=None, learned_many=None):
    store = MagicMock()
    store.find_similar_match.return_value = learned
    store.find_similar_matches.return_value = learned_many or []
    return store


def _llm(response=None, side_effect=None):
    llm = MagicMock()
    llm.complete = AsyncMock(return_value=response, side_effect=side_effect)
    return llm


def _engine(llm, store, multi=False, **kwargs):
    return MatchingEngine(llm=llm, store=store, multi_match=multi,
                          confidence_threshold=0.7, multi_match_threshold=0.75, **kwargs)


# ---------------------------------------------------------------------------
# Single-match mode
# ---------------------------------------------------------------------------
def test_single_match_high_confidence():
    llm = _llm({"test_id": "31834450", "case_id": "1001", "title": "ignored",
                "confidence": 0.92, "reasoning": "Generic page title"})
    store = _store()
    engine = _engine(llm, store)

    matches = asyncio.run(engine.match(BUG, CANDIDATES))

    assert len(matches) == 1
    match = matches[0]
    assert match.test_id == "31834450"
    assert match.title == CANDIDATES[0].title
    assert match.confidence >= 0.7
    assert engine.is_confident_match(match)
    store.store_match.assert_called_once_with(BUG, match)

def test_single_match_accepts_numeric_test_id():
    llm = _llm({"test_id": 31834451, "confidence": "0.8", "reasoning": "r"})
    matches = asyncio.run(_engine(llm, _store()).match(BUG, CANDIDATES))
    assert matches[0].test_id == "31834451"
    assert matches[0].confidence == 0.8

def test_single_match_unknown_id_is_invalid_output():
    llm = _llm({"test_id": "99999999", "confidence": 0.95, "reasoning": "made up"})
    store = _store()
    with pytest.raises(InvalidModelOutput):
        asyncio.run(_engine(llm, store).match(BUG, CANDIDATES))
    store.store_match.assert_not_called()

def test_single_match_missing_fields_is_invalid_output():
    llm = _llm({"reasoning": "forgot the id"})
    with pytest.raises(InvalidModelOutput):
        asyncio.run(_engine(llm, _store()).match(BUG, CANDIDATES))

def test_low_confidence_match_is_still_returned():
    llm = _llm({"test_id": "31834452", "confidence": 0.4, "reasoning": "weak"})
    engine = _engine(llm, _store())
    matches = asyncio.run(engine.match(BUG, CANDIDATES))
    assert matches[0].test_id == "31834452"
    assert not engine.is_confident_match(matches[0])

def test_learned_match_skips_model():
    learned = Match(test_id="31834450", case_id="1001", title="t", confidence=0.97,
                    reasoning='Similar to previous bug: "x"', learned=True)
    llm = _llm({"test_id": "31834451", "confidence": 0.9})
    store = _store(learned=learned)

    matches = asyncio.run(_engine(llm, store).match(BUG, CANDIDATES))

    assert matches == [learned]
    llm.complete.assert_not_called()
    store.store_match.assert_not_called()

def test_learned_match_outside_candidates_falls_back_to_model():
    learned = Match(test_id="55555555", case_id="5", confidence=0.97, learned=True)
    llm = _llm({"test_id": "31834450", "confidence": 0.9, "reasoning": "r"})

    matches = asyncio.run(_engine(llm, _store(learned=learned)).match(BUG, CANDIDATES))

    assert [m.test_id for m in matches] == ["31834450"]
    llm.complete.assert_awaited_once()

def test_model_timeout_raises_matching_timeout():
    async def slow(*args):
        await asyncio.sleep(5)

    llm = MagicMock()
    llm.complete = slow
    with pytest.raises(MatchingTimeout):
        asyncio.run(_engine(llm, _store(), timeout_seconds=0.01).match(BUG, CANDIDATES))

def test_provider_failure_propagates():
    llm = _llm(side_effect=MatchingFailed("All providers failed"))
    with pytest.raises(MatchingFailed):
        asyncio.run(_engine(llm, _store()).match(BUG, CANDIDATES))

def test_no_candidates():
    with pytest.raises(NoCandidates):
        asyncio.run(_engine(_llm({}), _store()).match(BUG, []))


# ---------------------------------------------------------------------------
# Pre-filter integration
# ---------------------------------------------------------------------------
def test_section_auto_match_skips_learning_and_model():
    llm = _llm({"test_id": "31834451", "confidence": 0.9})
    store = _store()
    lookup = AsyncMock(return_value={"1": "Page Titled", "2": "Headings", "3": "Focus"})

    matches = asyncio.run(_engine(llm, store).match(BUG, CANDIDATES, section_lookup=lookup))

    assert [m.test_id for m in matches] == ["31834450"]
    assert matches[0].auto_matched and matches[0].confidence == 1.0
    llm.complete.assert_not_called()
    store.find_similar_match.assert_not_called()

def test_model_only_sees_filtered_candidates():
    bug = BugReport(key="ROLL-2", summary="508c | Headings | Home", description="Heading missing")
    candidates = CANDIDATES + [
        TestCaseCandidate(test_id="31834453", case_id="1004", title="Heading levels", section_id="2"),
    ]
    llm = _llm({"test_id": "31834450", "confidence": 0.9})
    lookup = AsyncMock(return_value={"1": "Page Titled", "2": "Headings", "3": "Focus"})

    # 31834450 is a candidate of the run but was not shown to the model
    with pytest.raises(InvalidModelOutput):
        asyncio.run(_engine(llm, _store()).match(bug, candidates, section_lookup=lookup))
    prompt = llm.complete.await_args.args[1]
    assert "31834451" in prompt and "31834453" in prompt
    assert "31834452" not in prompt


# ---------------------------------------------------------------------------
# Multi-match mode
# ---------------------------------------------------------------------------
def test_multi_match_filters_validates_and_dedupes():
    llm = _llm({"matches": [
        {"test_id": "31834450", "confidence": 0.80, "reasoning": "title generic"},
        {"test_id": "31834450", "confidence": 0.95, "reasoning": "title not descriptive"},
        {"test_id": "31834451", "confidence": 0.90, "reasoning": "headings"},
        {"test_id": "31834452", "confidence": 0.50, "reasoning": "too weak"},
        {"test_id": "00000000", "confidence": 0.99, "reasoning": "invented"},
    ]})
    store = _store()

    matches = asyncio.run(_engine(llm, store, multi=True).match(BUG, CANDIDATES))

    assert [m.test_id for m in matches] == ["31834450", "31834451"]
    assert matches[0].confidence == 0.95
    assert matches[0].reasoning == "title not descriptive | title generic"
    assert store.store_match.call_count == 2

def test_multi_match_all_invalid_raises_no_valid_matches():
    llm = _llm({"matches": [{"test_id": "123", "confidence": 0.9}, {"confidence": 0.9}]})
    with pytest.raises(NoValidMatches):
        asyncio.run(_engine(llm, _store(), multi=True).match(BUG, CANDIDATES))

def test_multi_match_empty_list_raises_no_valid_matches():
    with pytest.raises(NoValidMatches):
        asyncio.run(_engine(_llm({"matches": []}), _store(), multi=True).match(BUG, CANDIDATES))

def test_multi_match_without_list_is_invalid_output():
    with pytest.raises(InvalidModelOutput):
        asyncio.run(_engine(_llm({"result": "none"}), _store(), multi=True).match(BUG, CANDIDATES))

def test_multi_learned_matches_used_when_all_are_candidates():
    learned = [
        Match(test_id="31834450", case_id="1001", confidence=0.9, learned=True),
        Match(test_id="31834452", case_id="1003", confidence=0.86, learned=True),
    ]
    llm = _llm({"matches": []})
    matches = asyncio.run(_engine(llm, _store(learned_many=learned), multi=True).match(BUG, CANDIDATES))
    assert matches == learned
    llm.complete.assert_not_called()

def test_multi_partial_learned_set_goes_to_model():
    learned = [
        Match(test_id="31834450", case_id="1001", confidence=0.9, learned=True),
        Match(test_id="77777777", case_id="7", confidence=0.9, learned=True),
    ]
    llm = _llm({"matches": [{"test_id": "31834451", "confidence": 0.9, "reasoning": "r"}]})
    matches = asyncio.run(_engine(llm, _store(learned_many=learned), multi=True).match(BUG, CANDIDATES))
    assert [m.test_id for m in matches] == ["31834451"]
    assert not matches[0].learned

def test_every_returned_id_is_a_candidate_with_real_store(tmp_path):
    store = CorrectionStore.from_path(str(tmp_path / "l.db"), learning_enabled=True)
    store.store_correction(BUG, "00000001", "1")
    llm = _llm({"matches": [
        {"test_id": "31834452", "confidence": 0.9, "reasoning": "r"},
        {"test_id": "00000001", "confidence": 0.9, "reasoning": "not in run"},
    ]})

    matches = asyncio.run(_engine(llm, store, multi=True).match(BUG, CANDIDATES))

    candidate_ids = {c.test_id for c in CANDIDATES}
    assert matches and all(m.test_id in candidate_ids for m in matches)

def test_store_access_runs_off_the_event_loop_thread():
    loop_thread = threading.get_ident()
    seen = []
    store = _store()
    store.find_similar_match.side_effect = lambda bug: seen.append(threading.get_ident())
    store.store_match.side_effect = lambda bug, match: seen.append(threading.get_ident())
    llm = _llm({"test_id": "31834450", "confidence": 0.92, "reasoning": "r"})

    asyncio.run(_engine(llm, store).match(BUG, CANDIDATES))

    assert len(seen) == 2
    assert loop_thread not in seen

def test_strategy_chosen_once_at_construction():
    assert isinstance(_engine(_llm(), _store()).strategy, SingleMatchStrategy)
    engine = _engine(_llm(), _store(), multi=True)
    assert isinstance(engine.strategy, MultiMatchStrategy)
    assert engine.strategy.threshold == 0.75
    assert engine.multi_match


# ---------------------------------------------------------------------------
# Dedup helper
# ---------------------------------------------------------------------------
def test_dedupe_keeps_highest_confidence_once():
    matches = [
        Match(test_id="1", case_id="1", confidence=0.8, reasoning="a"),
        Match(test_id="1", case_id="1", confidence=0.9, reasoning="b"),
        Match(test_id="1", case_id="1", confidence=0.85, reasoning="b"),
        Match(test_id="2", case_id="2", confidence=0.7, reasoning="c"),
    ]
    result = dedupe_by_test_id(matches)
    assert [(m.test_id, m.confidence) for m in result] == [("1", 0.9), ("2", 0.7)]
    assert result[0].reasoning == "b | a"
