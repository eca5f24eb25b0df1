"""
Jira client tests. HTTP is served by httpx.MockTransport.
"""
import asyncio
import json

import httpx
import pytest

from linker.clients.jira_client import (
    JiraClient, find_run_id_in_text, text_to_adf, to_bug_report,
)
from linker.core.errors import IssueTrackerError


def _client(routes, run_id_field=None, posted=None):
    def handler(request):
        if request.method == "POST" and posted is not None:
            posted.append((request.url.path, json.loads(request.content)))
            return httpx.Response(201, json={"id": "1"})
        body = routes.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="Issue does not exist")
        return httpx.Response(200, json=body)

    return JiraClient(
        base_url="https://jira.test",
        email="qa@example.com",
        api_token="token",
        run_id_field=run_id_field,
        transport=httpx.MockTransport(handler),
    )


def _issue(key, **fields):
    return {"key": key, "fields": fields}


def test_text_to_adf_one_paragraph_per_line():
    doc = text_to_adf("✅ TestRail Updated\n\nTest ID: 1")
    assert doc["type"] == "doc"
    assert [p["content"][0]["text"] for p in doc["content"]] == ["✅ TestRail Updated", "Test ID: 1"]

@pytest.mark.parametrize("text, expected", [
    ("TestRail Run: 4321", "4321"),
    ("run id: 77", "77"),
    ("see R998 for details", "998"),
    ("no run mentioned", None),
])
def test_find_run_id_in_text(text, expected):
    assert find_run_id_in_text(text) == expected

def test_to_bug_report_flattens_description_and_category():
    issue = _issue(
        "ROLL-1396",
        summary="508c | Page Titled | Home",
        description={"type": "doc", "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": "Title is generic"}]}
        ]},
        customfield_100={"value": "Page Titled"},
    )
    bug = to_bug_report(issue, category_field="customfield_100")
    assert bug.key == "ROLL-1396"
    assert bug.description == "Title is generic"
    assert bug.category == "Page Titled"


def test_find_run_id_from_parent_custom_field():
    routes = {
        "/rest/api/3/issue/ROLL-1396": _issue("ROLL-1396", parent={"key": "ROLL-100"}),
        "/rest/api/3/issue/ROLL-100": _issue("ROLL-100", customfield_555=1234.0),
    }
    client = _client(routes, run_id_field="customfield_555")
    assert asyncio.run(client.find_run_id("ROLL-1396")) == "1234"

def test_find_run_id_from_linked_task_comment():
    routes = {
        "/rest/api/3/issue/ROLL-1396": _issue("ROLL-1396", issuelinks=[
            {"type": {"name": "Duplicate"}, "outwardIssue": {"key": "ROLL-5", "fields": {"issuetype": {"name": "Bug"}}}},
            {"type": {"name": "Discovered while testing"},
             "inwardIssue": {"key": "ROLL-100", "fields": {"issuetype": {"name": "Task"}}}},
        ]),
        "/rest/api/3/issue/ROLL-100/comment": {"comments": [
            {"body": {"type": "doc", "content": [
                {"type": "paragraph", "content": [{"type": "text", "text": "Kickoff notes"}]}]}},
            {"body": {"type": "doc", "content": [
                {"type": "paragraph", "content": [{"type": "text", "text": "TestRail Run: 4321"}]}]}},
        ]},
    }
    client = _client(routes)
    assert asyncio.run(client.find_run_id("ROLL-1396")) == "4321"

def test_find_run_id_without_parent():
    client = _client({"/rest/api/3/issue/ROLL-1396": _issue("ROLL-1396")})
    assert asyncio.run(client.find_run_id("ROLL-1396")) is None

def test_add_comment_posts_adf():
    posted = []
    client = _client({}, posted=posted)
    asyncio.run(client.add_comment("ROLL-1396", "line one\nline two"))

    path, body = posted[0]
    assert path == "/rest/api/3/issue/ROLL-1396/comment"
    assert len(body["body"]["content"]) == 2

def test_http_error_is_wrapped():
    client = _client({})
    with pytest.raises(IssueTrackerError) as exc:
        asyncio.run(client.get_issue("ROLL-404"))
    assert "HTTP 404" in exc.value.message
    assert exc.value.code == "ISSUE_TRACKER_ERROR"
