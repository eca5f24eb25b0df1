"""
TestRail Client
===============
Test-management adapter for TestRail (API v2, ``index.php?/api/v2/...``).

Identifiers:
    run_id   — numeric run id, found on the bug's parent task in Jira
    test_id  — run-scoped test id (results are posted here)
    case_id  — stable case id (``C1234`` in the UI, bare digits here)

Defects are a comma-separated string on the wire and a list everywhere else.
Listings are cached per run; per-case detail fetches are rate limited.
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

logger = logging.getLogger(__name__)

API_PREFIX = "index.php?/api/v2"


def split_defects(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [d.strip() for d in str(raw).split(",") if d.strip()]


def _as_list(data: Any, key: str) -> List[dict]:
    # Paginated endpoints wrap the list, older instances return it bare
    if isinstance(data, dict):
        return data.get(key) or []
    return data or []


def _steps_of(case: Dict[str, Any]) -> List[str]:
    steps = []
    for step in case.get("custom_steps_separated") or []:
        if isinstance(step, dict):
            text = step.get("content") or ""
            expected = step.get("expected") or ""
            steps.append(f"{text} => {expected}" if expected else text)
        elif step:
            steps.append(str(step))
    if not steps and case.get("custom_steps"):
        steps.append(str(case["custom_steps"]))
    return steps


class TestRailClient(ApiClient, TestManagementClient):
    """
    Usage:
        client = TestRailClient(jira=jira, cache=cache)
        tests = await client.get_tests_with_details("1234")
        await client.mark_failed(tests[0].test_id, "1234", "Bug filed", ["ROLL-1"])
    """

    error_cls = TestManagementError
    service_name = "TestRail"
    system_name = "TestRail"
    run_label = "Run"

    def __init__(
        self,
        jira,
        cache,
        base_url: str = config.TESTRAIL_BASE_URL,
        username: str = config.TESTRAIL_USERNAME,
        password: str = config.TESTRAIL_PASSWORD,
        dry_run: bool = config.DRY_RUN_MODE,
        rate_limit_ms: int = config.TESTRAIL_RATE_LIMIT_MS,
        **kwargs,
    ) -> None:
        super().__init__(base_url, username, password, **kwargs)
        self.jira = jira
        self.cache = cache
        self.dry_run = dry_run
        self.rate_limit_ms = rate_limit_ms

    async def _api(self, method: str, endpoint: str, **kwargs) -> Any:
        return await self._request(method, f"{API_PREFIX}/{endpoint}", **kwargs)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def find_run_id(self, bug_key: str) -> Optional[str]:
        return await self.jira.find_run_id(bug_key)

    async def get_run(self, run_id: str) -> Dict[str, Any]:
        logger.info("Fetching TestRail run: %s", run_id)
        return await self._api("GET", f"get_run/{run_id}")

    async def get_tests(self, run_id: str) -> List[Dict[str, Any]]:
        logger.info("Fetching tests from run: %s", run_id)
        return _as_list(await self._api("GET", f"get_tests/{run_id}"), "tests")

    async def get_case(self, case_id: str) -> Dict[str, Any]:
        return await self._api("GET", f"get_case/{case_id}")

    async def get_tests_with_details(
        self, run_id: str, force_refresh: bool = False
    ) -> List[TestCaseCandidate]:
        cache_key = self.cache.tests_key(run_id)
        if not force_refresh:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("Using cached test cases for run %s (%d tests)", run_id, len(cached))
                return [TestCaseCandidate.model_validate(item) for item in cached]

        logger.info("Fetching fresh test cases from TestRail for run %s", run_id)
        tests = await self.get_tests(run_id)
        candidates: List[TestCaseCandidate] = []
        for index, test in enumerate(tests):
            if index and self.rate_limit_ms:
                await asyncio.sleep(self.rate_limit_ms / 1000)
            candidates.append(await self._candidate_for(test))

        self.cache.set(cache_key, [c.model_dump() for c in candidates])
        logger.info("Cached %d test cases for run %s", len(candidates), run_id)
        return candidates

    async def _candidate_for(self, test: Dict[str, Any]) -> TestCaseCandidate:
        base = {
            "test_id": str(test["id"]),
            "case_id": str(test["case_id"]),
            "title": test.get("title") or "",
        }
        try:
            case = await self.get_case(base["case_id"])
        except TestManagementError as e:
            logger.warning("Failed to fetch details for case %s: %s", base["case_id"], e)
            return TestCaseCandidate(**base)

        section_id = case.get("section_id") or test.get("section_id")
        return TestCaseCandidate(
            **base,
            steps=_steps_of(case),
            preconditions=case.get("custom_preconds") or "",
            expected_result=case.get("custom_expected") or "",
            section_id=str(section_id) if section_id is not None else None,
        )

    async def get_result_history(self, test_id: str, run_id: str) -> List[ResultEntry]:
        logger.info("Fetching results for test: %s", test_id)
        results = _as_list(await self._api("GET", f"get_results/{test_id}"), "results")
        history = []
        for result in results:
            status_id = result.get("status_id")
            if status_id == config.TESTRAIL_STATUS_PASSED:
                status = STATUS_PASSED
            elif status_id == config.TESTRAIL_STATUS_FAILED:
                status = STATUS_FAILED
            else:
                status = str(status_id or "")
            history.append(ResultEntry(
                defects=split_defects(result.get("defects")),
                status_id=status_id,
                status=status,
                comment=result.get("comment") or "",
            ))
        return history

    async def get_section_names(self, run_id: str) -> Dict[str, str]:
        run = await self.get_run(run_id)
        project_id, suite_id = run.get("project_id"), run.get("suite_id")
        endpoint = f"get_sections/{project_id}"
        if suite_id:
            endpoint += f"&suite_id={suite_id}"
        sections = _as_list(await self._api("GET", endpoint), "sections")
        return {str(s["id"]): s.get("name") or "" for s in sections}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def add_result(
        self, test_id: str, status_id: int, comment: str = "", defects: Optional[str] = None
    ) -> Dict[str, Any]:
        if self.dry_run:
            logger.info("[DRY RUN] Would update test %s to status %s", test_id, status_id)
            return {"dry_run": True, "test_id": test_id, "status_id": status_id, "defects": defects}

        logger.info("Updating TestRail test %s to status %s", test_id, status_id)
        payload: Dict[str, Any] = {"status_id": status_id, "comment": comment}
        # An empty string clears the defects field
        if defects is not None:
            payload["defects"] = defects
        return await self._api("POST", f"add_result/{test_id}", json=payload)

    async def mark_failed(
        self, test_id: str, run_id: str, comment: str, defects: List[str]
    ) -> Dict[str, Any]:
        return await self.add_result(test_id, config.TESTRAIL_STATUS_FAILED, comment, ",".join(defects))

    async def mark_passed(self, test_id: str, run_id: str, comment: str) -> Dict[str, Any]:
        return await self.add_result(test_id, config.TESTRAIL_STATUS_PASSED, comment, "")
