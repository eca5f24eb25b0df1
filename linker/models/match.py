"""
Match Models
============
Pydantic models for matcher output and the two learning ledgers.

Match:
    confidence   — 0.0–1.0; below the configured threshold means "link but warn"
    learned      — True when synthesized from the correction store
    auto_matched — True when the section pre-filter left a single candidate

Correction / MatchRecord are the append-only ledger entries. They carry a
snapshot of the bug so later similarity searches do not need the tracker.
"""
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field

from .bug_report import BugReport


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Match(BaseModel):
    test_id: str
    case_id: str
    title: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    learned: bool = False
    auto_matched: bool = False


class Correction(BaseModel):
    bug: BugReport
    correct_test_id: str
    correct_case_id: str
    correct_title: str = ""
    corrected_at: datetime = Field(default_factory=_utcnow)
    category: Optional[str] = None
    # First record of a CORRECT batch; older links for this bug are superseded
    replaces_previous: bool = False


class MatchRecord(BaseModel):
    bug: BugReport
    match: Match
    stored_at: datetime = Field(default_factory=_utcnow)
    category: Optional[str] = None
