"""
Xray Client
===========
Test-management adapter for Xray on Jira (server/DC REST, ``/rest/raven/1.0``).

Identifiers:
    run_id            — Test Execution issue key (e.g. "ROLL-900")
    test_id, case_id  — both the Test issue key; Xray has no separate
                        run-scoped test handle

Defects live in two places: on the test run itself and as Jira issue links on
the Test issue. History merges both so the open-defect gate sees every bug ever
attached. Sections map to the Test issue's first component.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from linker.clients.base import (
    ApiClient, TestManagementClient, STATUS_FAILED, STATUS_PASSED,
)
from linker.core import config
from linker.core.errors import TestManagementError
from linker.models.test_case import ResultEntry, TestCaseCandidate
from linker.parser.adf import description_from_adf
from linker.parser.field_values import field_to_text

logger = logging.getLogger(__name__)

RAVEN_PREFIX = "rest/raven/1.0"
TEST_EXECUTION_TYPE = "Test Execution"
DEFECT_LINK_TYPE = "Blocks"


def _issue_type(issue: Dict[str, Any]) -> str:
    return (((issue or {}).get("fields") or {}).get("issuetype") or {}).get("name", "")


def _linked_keys(issue: Dict[str, Any], link_type: str = DEFECT_LINK_TYPE) -> List[str]:
    keys = []
    for link in (issue.get("fields") or {}).get("issuelinks") or []:
        if ((link.get("type") or {}).get("name") or "") != link_type:
            continue
        linked = link.get("outwardIssue") or link.get("inwardIssue")
        if linked and linked.get("key"):
            keys.append(linked["key"])
    return keys


def _normalize_status(raw: str) -> str:
    if raw == config.XRAY_STATUS_PASS:
        return STATUS_PASSED
    if raw == config.XRAY_STATUS_FAIL:
        return STATUS_FAILED
    return (raw or "").lower()


class XrayClient(ApiClient, TestManagementClient):
    """
    Usage:
        client = XrayClient(jira=jira, cache=cache)
        execution = await client.find_run_id("ROLL-1396")
        tests = await client.get_tests_with_details(execution)
    """

    error_cls = TestManagementError
    service_name = "Xray"
    system_name = "Xray"
    run_label = "Test Execution"

    def __init__(
        self,
        jira,
        cache,
        base_url: str = config.XRAY_BASE_URL,
        email: str = config.XRAY_EMAIL,
        api_token: str = config.XRAY_API_TOKEN,
        execution_key_field: Optional[str] = config.XRAY_EXECUTION_KEY_FIELD,
        dry_run: bool = config.DRY_RUN_MODE,
        rate_limit_ms: int = config.XRAY_RATE_LIMIT_MS,
        **kwargs,
    ) -> None:
        super().__init__(base_url, email, api_token, **kwargs)
        self.jira = jira
        self.cache = cache
        self.execution_key_field = execution_key_field
        self.dry_run = dry_run
        self.rate_limit_ms = rate_limit_ms

    async def get_test_issue(self, test_key: str) -> Dict[str, Any]:
        return await self._request("GET", f"rest/api/3/issue/{test_key}")

    # ------------------------------------------------------------------
    # Execution discovery
    # ------------------------------------------------------------------
    def _execution_in(self, issue: Dict[str, Any]) -> Optional[str]:
        fields = issue.get("fields") or {}
        for link in fields.get("issuelinks") or []:
            linked = link.get("outwardIssue") or link.get("inwardIssue")
            if linked and _issue_type(linked) == TEST_EXECUTION_TYPE:
                return linked["key"]
        for subtask in fields.get("subtasks") or []:
            if _issue_type(subtask) == TEST_EXECUTION_TYPE:
                return subtask["key"]
        if self.execution_key_field:
            return field_to_text(fields.get(self.execution_key_field))
        return None

    async def find_run_id(self, bug_key: str) -> Optional[str]:
        parent = await self.jira.find_parent_issue(bug_key)
        owner_key = parent["key"] if parent else bug_key
        logger.info("Finding Test Execution for issue: %s", owner_key)

        execution = self._execution_in(await self.jira.get_issue(owner_key))
        if execution:
            logger.info("Found Test Execution: %s", execution)
        else:
            logger.warning("No Test Execution found for %s", owner_key)
        return execution

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_tests_with_details(
        self, run_id: str, force_refresh: bool = False
    ) -> List[TestCaseCandidate]:
        cache_key = self.cache.tests_key(run_id)
        if not force_refresh:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("Using cached test cases for execution %s (%d tests)", run_id, len(cached))
                return [TestCaseCandidate.model_validate(item) for item in cached]

        logger.info("Fetching fresh test cases from Xray for execution %s", run_id)
        entries = await self._request("GET", f"{RAVEN_PREFIX}/api/testexec/{run_id}/test")
        candidates: List[TestCaseCandidate] = []
        for index, entry in enumerate(entries or []):
            test_key = entry.get("key") if isinstance(entry, dict) else str(entry)
            if index and self.rate_limit_ms:
                await asyncio.sleep(self.rate_limit_ms / 1000)
            candidates.append(await self._candidate_for(test_key))

        self.cache.set(cache_key, [c.model_dump() for c in candidates])
        logger.info("Cached %d test cases for execution %s", len(candidates), run_id)
        return candidates

    async def _candidate_for(self, test_key: str) -> TestCaseCandidate:
        try:
            issue = await self.get_test_issue(test_key)
        except TestManagementError as e:
            logger.warning("Failed to fetch details for test %s: %s", test_key, e)
            return TestCaseCandidate(test_id=test_key, case_id=test_key)

        fields = issue.get("fields") or {}
        components = [c.get("name") for c in fields.get("components") or [] if c.get("name")]
        try:
            steps = await self._request("GET", f"{RAVEN_PREFIX}/api/test/{test_key}/step")
        except TestManagementError as e:
            logger.warning("Failed to fetch steps for test %s: %s", test_key, e)
            steps = []

        return TestCaseCandidate(
            test_id=test_key,
            case_id=test_key,
            title=fields.get("summary") or "",
            steps=[_step_text(s) for s in steps or [] if _step_text(s)],
            preconditions=description_from_adf(fields.get("description")),
            expected_result="; ".join(
                s.get("result", {}).get("raw", "") for s in steps or []
                if isinstance(s, dict) and isinstance(s.get("result"), dict)
            ),
            section_id=components[0] if components else None,
        )

    async def get_result_history(self, test_id: str, run_id: str) -> List[ResultEntry]:
        logger.info("Fetching test runs for test %s in execution %s", test_id, run_id)
        runs = await self._request(
            "GET",
            f"{RAVEN_PREFIX}/api/testrun",
            params={"testIssueKey": test_id, "testExecIssueKey": run_id},
        )
        if isinstance(runs, dict):
            runs = [runs] if runs else []

        history: List[ResultEntry] = []
        for run in runs or []:
            defects = [d.get("key") if isinstance(d, dict) else str(d) for d in run.get("defects") or []]
            history.append(ResultEntry(
                defects=[d for d in defects if d],
                status=_normalize_status(run.get("status", "")),
                comment=run.get("comment") or "",
            ))

        # Defects linked on the Test issue belong to the latest state
        linked = _linked_keys(await self.get_test_issue(test_id))
        if linked:
            if history:
                merged = list(dict.fromkeys(history[0].defects + linked))
                history[0] = history[0].model_copy(update={"defects": merged})
            else:
                history.append(ResultEntry(defects=linked))
        return history

    async def get_section_names(self, run_id: str) -> Dict[str, str]:
        # Components are already human-readable; ids and names coincide
        tests = await self.get_tests_with_details(run_id)
        return {t.section_id: t.section_id for t in tests if t.section_id}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def add_test_run(
        self, test_key: str, execution_key: str, status: str, comment: str = "", defects: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        defects = defects or []
        if self.dry_run:
            logger.info(
                "[DRY RUN] Would update test %s in execution %s to status %s",
                test_key, execution_key, status,
            )
            return {"dry_run": True, "test_key": test_key, "status": status, "defects": defects}

        logger.info("Updating test %s in execution %s to status %s", test_key, execution_key, status)
        result = await self._request(
            "POST",
            f"{RAVEN_PREFIX}/import/execution",
            json={
                "testExecutionKey": execution_key,
                "tests": [{"testKey": test_key, "status": status, "comment": comment}],
            },
        )
        for defect_key in defects:
            await self.jira.link_issues(test_key, defect_key, DEFECT_LINK_TYPE)
        return result

    async def mark_failed(
        self, test_id: str, run_id: str, comment: str, defects: List[str]
    ) -> Dict[str, Any]:
        return await self.add_test_run(test_id, run_id, config.XRAY_STATUS_FAIL, comment, defects)

    async def mark_passed(self, test_id: str, run_id: str, comment: str) -> Dict[str, Any]:
        return await self.add_test_run(test_id, run_id, config.XRAY_STATUS_PASS, comment)


def _step_text(step: Any) -> str:
    if isinstance(step, dict):
        action = step.get("step") or step.get("action") or {}
        if isinstance(action, dict):
            return action.get("raw") or action.get("rendered") or ""
        return str(action)
    return str(step or "")
