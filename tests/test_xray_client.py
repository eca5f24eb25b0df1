"""
Xray adapter tests. HTTP is served by httpx.MockTransport.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx

from linker.clients.xray_client import XrayClient
from linker.services.cache_service import TestCaseCache

TEST_ISSUE = {
    "key": "ROLL-501",
    "fields": {
        "summary": "Page title is meaningful",
        "components": [{"name": "Page Titled"}],
        "description": "Open the home page",
        "issuelinks": [
            {"type": {"name": "Blocks"}, "outwardIssue": {"key": "ROLL-1398"}},
            {"type": {"name": "Relates"}, "outwardIssue": {"key": "ROLL-7"}},
        ],
    },
}


def _handler(posted):
    def handler(request):
        path = request.url.path
        if request.method == "POST":
            posted.append(json.loads(request.content))
            return httpx.Response(200, json={"testExecIssue": {"key": "ROLL-900"}})
        if path == "/rest/raven/1.0/api/testexec/ROLL-900/test":
            return httpx.Response(200, json=[{"key": "ROLL-501"}])
        if path == "/rest/api/3/issue/ROLL-501":
            return httpx.Response(200, json=TEST_ISSUE)
        if path == "/rest/raven/1.0/api/test/ROLL-501/step":
            return httpx.Response(200, json=[
                {"step": {"raw": "Read the title"}, "result": {"raw": "Title describes page"}},
            ])
        if path == "/rest/raven/1.0/api/testrun":
            assert request.url.params["testExecIssueKey"] == "ROLL-900"
            return httpx.Response(200, json=[
                {"status": "FAIL", "defects": [{"key": "ROLL-1396"}]},
                {"status": "PASS", "defects": []},
            ])
        return httpx.Response(404)
    return handler


def _client(tmp_path, jira=None, dry_run=False, posted=None):
    return XrayClient(
        jira=jira or MagicMock(),
        cache=TestCaseCache(cache_dir=str(tmp_path)),
        base_url="https://jira.test",
        email="qa@example.com",
        api_token="token",
        execution_key_field=None,
        dry_run=dry_run,
        rate_limit_ms=0,
        transport=httpx.MockTransport(_handler(posted if posted is not None else [])),
    )


def test_find_execution_on_parent():
    jira = MagicMock()
    jira.find_parent_issue = AsyncMock(return_value={"key": "ROLL-100"})
    jira.get_issue = AsyncMock(return_value={"fields": {"issuelinks": [
        {"outwardIssue": {"key": "ROLL-900", "fields": {"issuetype": {"name": "Test Execution"}}}},
    ]}})

    client = XrayClient(jira=jira, cache=MagicMock())
    assert asyncio.run(client.find_run_id("ROLL-1396")) == "ROLL-900"
    jira.get_issue.assert_awaited_once_with("ROLL-100")

def test_tests_with_details(tmp_path):
    tests = asyncio.run(_client(tmp_path).get_tests_with_details("ROLL-900"))

    assert len(tests) == 1
    test = tests[0]
    assert test.test_id == test.case_id == "ROLL-501"
    assert test.steps == ["Read the title"]
    assert test.expected_result == "Title describes page"
    assert test.section_id == "Page Titled"

def test_section_names_are_components(tmp_path):
    names = asyncio.run(_client(tmp_path).get_section_names("ROLL-900"))
    assert names == {"Page Titled": "Page Titled"}

def test_history_merges_linked_defects(tmp_path):
    history = asyncio.run(_client(tmp_path).get_result_history("ROLL-501", "ROLL-900"))

    assert [h.status for h in history] == ["failed", "passed"]
    assert history[0].defects == ["ROLL-1396", "ROLL-1398"]

def test_mark_failed_imports_result_and_links_defect(tmp_path):
    posted = []
    jira = MagicMock(link_issues=AsyncMock())
    client = _client(tmp_path, jira=jira, posted=posted)

    asyncio.run(client.mark_failed("ROLL-501", "ROLL-900", "Bug filed: ROLL-1396", ["ROLL-1396"]))

    assert posted[0]["testExecutionKey"] == "ROLL-900"
    assert posted[0]["tests"][0]["status"] == "FAIL"
    jira.link_issues.assert_awaited_once_with("ROLL-501", "ROLL-1396", "Blocks")

def test_dry_run_writes_nothing(tmp_path):
    posted = []
    jira = MagicMock(link_issues=AsyncMock())
    result = asyncio.run(
        _client(tmp_path, jira=jira, dry_run=True, posted=posted).mark_passed("ROLL-501", "ROLL-900", "ok")
    )

    assert result["dry_run"] is True
    assert posted == []
    jira.link_issues.assert_not_awaited()
