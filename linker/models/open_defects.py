"""
Open Defect Models
==================
Structured results of the open-defect gate. A blocked passing transition is
reported here as data, never raised.
"""
from typing import List, Optional
from pydantic import BaseModel, Field


class OpenDefect(BaseModel):
    key: str
    status: str
    summary: str = ""


class OpenDefectCheckResult(BaseModel):
    has_open: bool
    open_bugs: List[OpenDefect] = Field(default_factory=list)
    total_bugs_checked: int = 0


class PassTransitionResult(BaseModel):
    """Outcome of one attempt to mark a test passing.

    outcome is one of ``passed``, ``already_passed`` or ``blocked``; only
    ``passed`` writes a result. ``error_code`` is OPEN_DEFECTS_REMAIN when
    blocked.
    """

    test_id: str
    outcome: str
    open_bugs: List[OpenDefect] = Field(default_factory=list)
    error_code: Optional[str] = None
    dry_run: bool = False

    @property
    def written(self) -> bool:
        return self.outcome == "passed"
