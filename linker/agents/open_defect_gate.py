"""
Open-Defect Gate
================
Decides whether a test may go green when one of its bugs is resolved.

Every defect ever attached to the test (the union over its whole result
history, not just the latest entry) is looked up in the issue tracker, minus
the bug being resolved. Any defect whose status is in the open set blocks the
passing transition.

Fail-safe:
    A status lookup that errors or exceeds STATUS_LOOKUP_TIMEOUT_SECONDS is
    counted as open. The gate never lets a test pass while uncertain.

States (derived per call, never stored):
    no-history                 → passing  (nothing to check)
    passing                    → passing  (already-passed, nothing written)
    failing-with-open-defects  → unchanged (blocked, nothing written)
    failing-resolvable         → passing  (new result, empty defect list)
"""
import asyncio
import logging
from typing import Iterable, List, Optional

from linker.clients.base import STATUS_PASSED, TestManagementClient
from linker.clients.jira_client import issue_status, issue_summary
from linker.core import config
from linker.core.errors import OPEN_DEFECTS_REMAIN
from linker.models.open_defects import OpenDefect, OpenDefectCheckResult, PassTransitionResult
from linker.models.test_case import ResultEntry

logger = logging.getLogger(__name__)

UNKNOWN_STATUS = "Unknown"
UNKNOWN_SUMMARY = "Could not retrieve bug details"


def historical_defects(history: Iterable[ResultEntry]) -> List[str]:
    """Union of defect keys across all results, first-seen order."""
    seen = {}
    for entry in history:
        for key in entry.defects:
            seen.setdefault(key, None)
    return list(seen)


class OpenDefectGate:
    """
    Parameters
    ----------
    tm_client : TestManagementClient
        Source of result histories and target of the passing write.
    tracker
        Anything with ``async get_issue(key) -> dict`` (JiraClient).
    open_statuses : iterable of str
        Status names that count as open.
    lookup_timeout : float
        Seconds allowed per defect status lookup.
    """

    def __init__(
        self,
        tm_client: TestManagementClient,
        tracker,
        open_statuses: Iterable[str] = config.OPEN_STATUSES,
        lookup_timeout: float = config.STATUS_LOOKUP_TIMEOUT_SECONDS,
    ) -> None:
        self.tm_client = tm_client
        self.tracker = tracker
        self.open_statuses = frozenset(open_statuses)
        self.lookup_timeout = lookup_timeout

    async def _lookup(self, key: str) -> OpenDefect:
        try:
            issue = await asyncio.wait_for(self.tracker.get_issue(key), timeout=self.lookup_timeout)
        except asyncio.TimeoutError:
            logger.warning("Status lookup for %s timed out, treating as open", key)
            return OpenDefect(key=key, status=UNKNOWN_STATUS, summary=UNKNOWN_SUMMARY)
        except Exception as e:  # any tracker failure counts as open
            logger.warning("Could not check status of %s, treating as open: %s", key, e)
            return OpenDefect(key=key, status=UNKNOWN_STATUS, summary=UNKNOWN_SUMMARY)
        return OpenDefect(key=key, status=issue_status(issue), summary=issue_summary(issue))

    async def check_open_defects(
        self,
        test_id: str,
        resolving_bug_key: str,
        run_id: str,
        history: Optional[List[ResultEntry]] = None,
    ) -> OpenDefectCheckResult:
        """Classify every other defect ever attached to *test_id*."""
        if history is None:
            history = await self.tm_client.get_result_history(test_id, run_id)
        others = [k for k in historical_defects(history) if k != resolving_bug_key]
        logger.info(
            "Checking %d other bug(s) on test %s: %s",
            len(others), test_id, ", ".join(others) or "none",
        )

        open_bugs: List[OpenDefect] = []
        for key in others:
            defect = await self._lookup(key)
            if defect.status == UNKNOWN_STATUS or defect.status in self.open_statuses:
                logger.info("Bug %s is still open (%s)", key, defect.status)
                open_bugs.append(defect)
            else:
                logger.info("Bug %s is resolved or in progress (%s)", key, defect.status)

        return OpenDefectCheckResult(
            has_open=bool(open_bugs),
            open_bugs=open_bugs,
            total_bugs_checked=len(others),
        )

    async def mark_passed_if_clear(
        self,
        test_id: str,
        bug_key: str,
        run_id: str,
        reason: str = "",
    ) -> PassTransitionResult:
        """
        Write a passing result unless the test already passes or other bugs
        are still open. *reason* becomes the result comment.
        """
        history = await self.tm_client.get_result_history(test_id, run_id)
        if history and history[0].status == STATUS_PASSED:
            logger.info("Test %s is already passed, skipping", test_id)
            return PassTransitionResult(test_id=test_id, outcome="already_passed")

        check = await self.check_open_defects(test_id, bug_key, run_id, history=history)
        if check.has_open:
            logger.warning(
                "Cannot mark test %s as passed: %d other bug(s) still open",
                test_id, len(check.open_bugs),
            )
            return PassTransitionResult(
                test_id=test_id,
                outcome="blocked",
                open_bugs=check.open_bugs,
                error_code=OPEN_DEFECTS_REMAIN,
            )

        result = await self.tm_client.mark_passed(test_id, run_id, reason or f"Bug resolved: {bug_key}")
        dry_run = isinstance(result, dict) and bool(result.get("dry_run"))
        logger.info("Test %s marked as passed%s", test_id, " (dry run)" if dry_run else "")
        return PassTransitionResult(test_id=test_id, outcome="passed", dry_run=dry_run)
