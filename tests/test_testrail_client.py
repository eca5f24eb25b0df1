"""
TestRail adapter tests. HTTP is served by httpx.MockTransport, the Jira side
is an AsyncMock and the cache lives under tmp_path.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from linker.clients.testrail_client import TestRailClient, split_defects
from linker.core.errors import TestManagementError
from linker.services.cache_service import TestCaseCache

def _route(request):
    # TestRail puts the endpoint in the query string: index.php?/api/v2/get_case/1
    return request.url.query.decode()


class FakeTestRail:
    def __init__(self):
        self.requests = []
        self.posted = []
        self.results = {}
        self.fail_case = set()

    def __call__(self, request):
        route = _route(request)
        self.requests.append(route)
        if request.method == "POST":
            self.posted.append((route, json.loads(request.content)))
            return httpx.Response(200, json={"id": 99})
        if route.startswith("/api/v2/get_tests/"):
            return httpx.Response(200, json={"tests": [
                {"id": 31834450, "case_id": 1001, "title": "Page title is meaningful"},
                {"id": 31834451, "case_id": 1002, "title": "Headings are identified", "section_id": 2},
            ]})
        if route.startswith("/api/v2/get_case/"):
            case_id = route.rsplit("/", 1)[1]
            if case_id in self.fail_case:
                return httpx.Response(500, text="boom")
            return httpx.Response(200, json={
                "section_id": 1,
                "custom_preconds": "Open Home",
                "custom_expected": "Descriptive title",
                "custom_steps_separated": [{"content": "Read title", "expected": "Describes page"}],
            })
        if route.startswith("/api/v2/get_results/"):
            test_id = route.rsplit("/", 1)[1]
            return httpx.Response(200, json=self.results.get(test_id, []))
        if route.startswith("/api/v2/get_run/"):
            return httpx.Response(200, json={"project_id": 7, "suite_id": 3})
        if route.startswith("/api/v2/get_sections/7"):
            return httpx.Response(200, json={"sections": [
                {"id": 1, "name": "Page Titled"}, {"id": 2, "name": "Headings"},
            ]})
        return httpx.Response(404)


def _client(fake, tmp_path, dry_run=False):
    return TestRailClient(
        jira=MagicMock(find_run_id=AsyncMock(return_value="1234")),
        cache=TestCaseCache(cache_dir=str(tmp_path)),
        base_url="https://testrail.test",
        username="qa",
        password="key",
        dry_run=dry_run,
        rate_limit_ms=0,
        transport=httpx.MockTransport(fake),
    )


@pytest.mark.parametrize("raw, expected", [
    ("ROLL-1, ROLL-2", ["ROLL-1", "ROLL-2"]),
    ("ROLL-1,,", ["ROLL-1"]),
    ("", []),
    (None, []),
])
def test_split_defects(raw, expected):
    assert split_defects(raw) == expected


def test_tests_with_details_are_cached(tmp_path):
    fake = FakeTestRail()
    client = _client(fake, tmp_path)

    tests = asyncio.run(client.get_tests_with_details("1234"))
    again = asyncio.run(client.get_tests_with_details("1234"))

    assert [t.test_id for t in tests] == ["31834450", "31834451"]
    assert tests[0].case_id == "1001"
    assert tests[0].steps == ["Read title => Describes page"]
    assert tests[0].preconditions == "Open Home"
    assert tests[0].section_id == "1"
    assert again == tests
    assert sum(1 for r in fake.requests if r.startswith("/api/v2/get_tests/")) == 1

def test_force_refresh_bypasses_cache(tmp_path):
    fake = FakeTestRail()
    client = _client(fake, tmp_path)
    asyncio.run(client.get_tests_with_details("1234"))
    asyncio.run(client.get_tests_with_details("1234", force_refresh=True))
    assert sum(1 for r in fake.requests if r.startswith("/api/v2/get_tests/")) == 2

def test_case_detail_failure_keeps_bare_candidate(tmp_path):
    fake = FakeTestRail()
    fake.fail_case.add("1002")
    tests = asyncio.run(_client(fake, tmp_path).get_tests_with_details("1234"))

    assert tests[1].title == "Headings are identified"
    assert tests[1].steps == []

def test_result_history_normalizes_status_and_defects(tmp_path):
    fake = FakeTestRail()
    fake.results["31834450"] = {"results": [
        {"status_id": 5, "defects": "ROLL-1396, ROLL-1398", "comment": "Bug filed"},
        {"status_id": 1, "defects": None},
    ]}
    history = asyncio.run(_client(fake, tmp_path).get_result_history("31834450", "1234"))

    assert [h.status for h in history] == ["failed", "passed"]
    assert history[0].defects == ["ROLL-1396", "ROLL-1398"]
    assert history[1].defects == []

def test_is_bug_already_linked_reads_whole_history(tmp_path):
    fake = FakeTestRail()
    fake.results["31834450"] = [{"status_id": 1}, {"status_id": 5, "defects": "ROLL-1396"}]
    client = _client(fake, tmp_path)

    assert asyncio.run(client.is_bug_already_linked("31834450", "ROLL-1396", "1234"))
    assert not asyncio.run(client.is_bug_already_linked("31834450", "ROLL-1", "1234"))

def test_mark_failed_and_passed_payloads(tmp_path):
    fake = FakeTestRail()
    client = _client(fake, tmp_path)

    asyncio.run(client.mark_failed("31834450", "1234", "Bug filed: ROLL-1", ["ROLL-1", "ROLL-2"]))
    asyncio.run(client.mark_passed("31834450", "1234", "Bug resolved: ROLL-1"))

    (route, failed), (_, passed) = fake.posted
    assert route == "/api/v2/add_result/31834450"
    assert failed == {"status_id": 5, "comment": "Bug filed: ROLL-1", "defects": "ROLL-1,ROLL-2"}
    assert passed == {"status_id": 1, "comment": "Bug resolved: ROLL-1", "defects": ""}

def test_dry_run_sends_nothing(tmp_path):
    fake = FakeTestRail()
    result = asyncio.run(_client(fake, tmp_path, dry_run=True).mark_failed("1", "1234", "c", ["ROLL-1"]))

    assert result["dry_run"] is True
    assert fake.posted == []

def test_section_names(tmp_path):
    fake = FakeTestRail()
    names = asyncio.run(_client(fake, tmp_path).get_section_names("1234"))

    assert names == {"1": "Page Titled", "2": "Headings"}
    assert "/api/v2/get_sections/7&suite_id=3" in fake.requests

def test_find_run_id_delegates_to_jira(tmp_path):
    client = _client(FakeTestRail(), tmp_path)
    assert asyncio.run(client.find_run_id("ROLL-1396")) == "1234"

def test_http_failure_is_wrapped(tmp_path):
    client = _client(lambda request: httpx.Response(401, text="bad key"), tmp_path)
    with pytest.raises(TestManagementError) as exc:
        asyncio.run(client.get_run("1234"))
    assert "HTTP 401" in exc.value.message
