"""
Test Case Models
================
Candidates supplied by the test-management adapter, read-only to the matcher.

``test_id`` is run-scoped (the handle results are posted against) while
``case_id`` names the stable case definition.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class TestCaseCandidate(BaseModel):
    __test__ = False

    model_config = ConfigDict(frozen=True)

    test_id: str
    case_id: str
    title: str = ""
    steps: List[str] = Field(default_factory=list)
    preconditions: str = ""
    expected_result: str = ""
    section_id: Optional[str] = None


class ResultEntry(BaseModel):
    """One historical result of a test; history lists are newest-first."""

    defects: List[str] = Field(default_factory=list)
    status_id: Optional[int] = None
    status: str = ""
    comment: str = ""


class LinkedTest(BaseModel):
    """A (test, case, title) triple recovered from the correction store."""

    test_id: str
    case_id: str
    title: str = ""
