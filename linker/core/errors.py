"""
Errors
======
Typed failures raised by the matching core and its collaborators.

Every error carries a machine-readable ``code`` so the workflow layer and the
HTTP API can report it without string matching. The codes mirror the failure
taxonomy:

    RUN_NOT_FOUND           — no run / execution could be resolved for the bug
    NO_CANDIDATES           — the run resolved but holds no test cases
    MATCHING_TIMEOUT        — the reasoning model exceeded its time bound
    MATCHING_FAILED         — transport failure on every provider
    INVALID_MODEL_OUTPUT    — well-formed answer naming unknown ids / missing fields
    NO_VALID_MATCHES        — multi-match validated zero entries
    INVALID_CORRECTION_SYNTAX — correction text matched neither keyword
    OPEN_DEFECTS_REMAIN     — gate blocked a passing transition (never raised)
"""
from typing import Optional

from linker.core.constants import CORRECTION_SYNTAX_HELP


# ---------------------------------------------------------------------------
# Codes
# ---------------------------------------------------------------------------
RUN_NOT_FOUND = "RUN_NOT_FOUND"
NO_CANDIDATES = "NO_CANDIDATES"
MATCHING_TIMEOUT = "MATCHING_TIMEOUT"
MATCHING_FAILED = "MATCHING_FAILED"
INVALID_MODEL_OUTPUT = "INVALID_MODEL_OUTPUT"
NO_VALID_MATCHES = "NO_VALID_MATCHES"
INVALID_CORRECTION_SYNTAX = "INVALID_CORRECTION_SYNTAX"
OPEN_DEFECTS_REMAIN = "OPEN_DEFECTS_REMAIN"
ISSUE_TRACKER_ERROR = "ISSUE_TRACKER_ERROR"
TEST_MANAGEMENT_ERROR = "TEST_MANAGEMENT_ERROR"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------
class LinkerError(Exception):
    """Base class for every failure surfaced to the workflow caller."""

    code = "LINKER_ERROR"

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        data = {"error_code": self.code, "error": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data


class RunNotFound(LinkerError):
    code = RUN_NOT_FOUND


class NoCandidates(LinkerError):
    code = NO_CANDIDATES


class MatchingTimeout(LinkerError):
    code = MATCHING_TIMEOUT


class MatchingFailed(LinkerError):
    code = MATCHING_FAILED


class InvalidModelOutput(LinkerError):
    code = INVALID_MODEL_OUTPUT


class NoValidMatches(LinkerError):
    code = NO_VALID_MATCHES


class InvalidCorrectionSyntax(LinkerError):
    code = INVALID_CORRECTION_SYNTAX

    def __init__(self, message: str = "", *, detail: Optional[str] = None) -> None:
        text = message or "Invalid correction format"
        super().__init__(f"{text}. Use: {CORRECTION_SYNTAX_HELP}", detail=detail)


class IssueTrackerError(LinkerError):
    """Jira request failed (HTTP error, timeout, unexpected payload)."""
    code = ISSUE_TRACKER_ERROR


class TestManagementError(LinkerError):
    """TestRail / Xray request failed."""
    code = TEST_MANAGEMENT_ERROR
    __test__ = False  # keep pytest from collecting this as a test class
