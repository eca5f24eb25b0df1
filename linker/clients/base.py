"""
Client Base
===========
Shared HTTP plumbing and the contracts the matcher needs from its external
collaborators.

ApiClient:
    Lazy httpx.AsyncClient with basic auth. Every transport or HTTP status
    failure is re-raised as the subclass's ``error_cls`` so callers only ever
    see IssueTrackerError / TestManagementError.

TestManagementClient:
    The adapter contract (TestRail or Xray). Identifiers are opaque strings;
    result histories are newest-first ResultEntry lists with normalized
    ``passed`` / ``failed`` statuses.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type

import httpx

from linker.core import config
from linker.core.errors import LinkerError
from linker.models.test_case import ResultEntry, TestCaseCandidate

logger = logging.getLogger(__name__)

STATUS_PASSED = "passed"
STATUS_FAILED = "failed"


# ---------------------------------------------------------------------------
# HTTP base
# ---------------------------------------------------------------------------
class ApiClient:
    """Async REST client with basic auth and typed error wrapping."""

    error_cls: Type[LinkerError] = LinkerError
    service_name = "API"

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = config.HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self._auth = httpx.BasicAuth(username or "", password or "")
        self._timeout = timeout
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                auth=self._auth,
                timeout=httpx.Timeout(self._timeout),
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send a request relative to ``base_url`` and decode the JSON body.

        Raises
        ------
        error_cls
            On timeout, transport failure, non-2xx status or undecodable body.
        """
        http = await self._get_http()
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = await http.request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self.error_cls(
                f"{self.service_name} {method} {path} failed: HTTP {e.response.status_code}",
                detail=e.response.text[:500],
            ) from e
        except httpx.HTTPError as e:
            raise self.error_cls(f"{self.service_name} {method} {path} failed: {e}") from e

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise self.error_cls(f"{self.service_name} {method} {path} returned non-JSON body") from e


# ---------------------------------------------------------------------------
# Test management contract
# ---------------------------------------------------------------------------
class TestManagementClient(ABC):
    """Adapter contract for TestRail-style and Xray-style systems."""

    __test__ = False

    system_name = ""
    run_label = ""

    @abstractmethod
    async def find_run_id(self, bug_key: str) -> Optional[str]:
        """Run id (TestRail) or Test Execution key (Xray) for a bug, or None."""

    @abstractmethod
    async def get_tests_with_details(
        self, run_id: str, force_refresh: bool = False
    ) -> List[TestCaseCandidate]:
        ...

    @abstractmethod
    async def get_result_history(self, test_id: str, run_id: str) -> List[ResultEntry]:
        """Every result of a test, newest first."""

    @abstractmethod
    async def mark_failed(
        self, test_id: str, run_id: str, comment: str, defects: List[str]
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def mark_passed(self, test_id: str, run_id: str, comment: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def get_section_names(self, run_id: str) -> Dict[str, str]:
        """section_id → human-readable section name for the run's suite."""

    async def is_bug_already_linked(self, test_id: str, bug_key: str, run_id: str) -> bool:
        history = await self.get_result_history(test_id, run_id)
        linked = any(bug_key in entry.defects for entry in history)
        logger.info(
            "Bug %s %s linked to test %s", bug_key, "is already" if linked else "is not", test_id
        )
        return linked

    async def find_tests_with_bug(self, run_id: str, bug_key: str) -> List[TestCaseCandidate]:
        tests = await self.get_tests_with_details(run_id)
        found = []
        for test in tests:
            if await self.is_bug_already_linked(test.test_id, bug_key, run_id):
                found.append(test)
        logger.info("Found %d test(s) with bug %s in %s %s", len(found), bug_key, self.run_label, run_id)
        return found

    async def close(self) -> None:
        """Release HTTP resources; adapters without any keep the default."""


def create_test_management_client(
    system: str = config.TEST_MANAGEMENT_SYSTEM,
    jira=None,
    cache=None,
) -> TestManagementClient:
    """
    Build the adapter named by *system*.

    Raises
    ------
    ValueError
        For anything other than ``testrail`` or ``xray``.
    """
    from linker.clients.jira_client import JiraClient
    from linker.clients.testrail_client import TestRailClient
    from linker.clients.xray_client import XrayClient
    from linker.services.cache_service import TestCaseCache

    jira = jira or JiraClient()
    cache = cache or TestCaseCache()
    name = (system or "").lower()
    logger.info("Test Management System: %s", name)

    if name == "testrail":
        return TestRailClient(jira=jira, cache=cache)
    if name == "xray":
        return XrayClient(jira=jira, cache=cache)
    raise ValueError(f"Unsupported test management system: {system}. Use 'testrail' or 'xray'.")
