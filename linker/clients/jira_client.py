"""
Jira Client
===========
Issue-tracker adapter (Jira Cloud REST v3).

Responsibilities:
    - fetch issues and their status
    - post plain-text comments (wrapped as ADF paragraphs)
    - locate the parent task of a bug and the test run id recorded on it

Run id discovery order:
    1. parent's run-id custom field (string, number, ADF or option object)
    2. first parent comment matching one of RUN_ID_PATTERNS
"""
import logging
import re
from typing import Any, Dict, List, Optional

from linker.clients.base import ApiClient
from linker.core import config
from linker.core.errors import IssueTrackerError
from linker.models.bug_report import BugReport
from linker.parser.adf import description_from_adf, text_from_adf
from linker.parser.field_values import field_to_text

logger = logging.getLogger(__name__)

PARENT_LINK_TYPES = (
    "discovered while testing",
    "is caused by",
    "relates to",
    "bonfire testing",
    "blocks",
    "is blocked by",
    "testing",
)
PARENT_ISSUE_TYPES = ("Story", "Task", "Epic")

RUN_ID_PATTERNS = (
    re.compile(r"Run:\s*(\d+)", re.I),
    re.compile(r"TestRail Run:\s*(\d+)", re.I),
    re.compile(r"Run ID:\s*(\d+)", re.I),
    re.compile(r"R(\d+)"),
)


def text_to_adf(text: str) -> Dict[str, Any]:
    """Wrap plain text in an ADF document, one paragraph per non-empty line."""
    content = [
        {"type": "paragraph", "content": [{"type": "text", "text": line}]}
        for line in (text or "").splitlines()
        if line.strip()
    ]
    return {"type": "doc", "version": 1, "content": content}


def issue_status(issue: Dict[str, Any]) -> str:
    return ((issue.get("fields") or {}).get("status") or {}).get("name", "")


def issue_summary(issue: Dict[str, Any]) -> str:
    return (issue.get("fields") or {}).get("summary") or ""


def to_bug_report(issue: Dict[str, Any], category_field: Optional[str] = config.JIRA_CATEGORY_FIELD) -> BugReport:
    fields = issue.get("fields") or {}
    category = field_to_text(fields.get(category_field)) if category_field else None
    if category:
        logger.info("WCAG Category: %s", category)
    return BugReport(
        key=issue.get("key", ""),
        summary=fields.get("summary") or "",
        description=description_from_adf(fields.get("description")),
        category=category,
    )


def find_run_id_in_text(text: str) -> Optional[str]:
    for pattern in RUN_ID_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return match.group(1)
    return None


class JiraClient(ApiClient):
    """
    Usage:
        jira = JiraClient()
        issue = await jira.get_issue("ROLL-1396")
        await jira.add_comment("ROLL-1396", "Linked to C1234")
        await jira.close()
    """

    error_cls = IssueTrackerError
    service_name = "Jira"

    def __init__(
        self,
        base_url: str = config.JIRA_BASE_URL,
        email: str = config.JIRA_EMAIL,
        api_token: str = config.JIRA_API_TOKEN,
        run_id_field: Optional[str] = config.JIRA_RUN_ID_FIELD,
        **kwargs,
    ) -> None:
        super().__init__(base_url, email, api_token, **kwargs)
        self.run_id_field = run_id_field

    async def get_issue(self, key: str) -> Dict[str, Any]:
        logger.info("Fetching JIRA issue: %s", key)
        return await self._request("GET", f"rest/api/3/issue/{key}")

    async def get_bug_report(self, key: str) -> BugReport:
        return to_bug_report(await self.get_issue(key))

    async def add_comment(self, key: str, text: str) -> None:
        logger.info("Adding comment to JIRA issue: %s", key)
        await self._request("POST", f"rest/api/3/issue/{key}/comment", json={"body": text_to_adf(text)})

    async def get_comments(self, key: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", f"rest/api/3/issue/{key}/comment")
        return data.get("comments") or []

    # ------------------------------------------------------------------
    # Parent / run discovery
    # ------------------------------------------------------------------
    async def find_parent_issue(self, key: str) -> Optional[Dict[str, Any]]:
        issue = await self.get_issue(key)
        fields = issue.get("fields") or {}

        if fields.get("parent"):
            logger.info("Found parent via parent field: %s", fields["parent"].get("key"))
            return fields["parent"]

        for link in fields.get("issuelinks") or []:
            link_type = ((link.get("type") or {}).get("name") or "").lower()
            if not any(t in link_type for t in PARENT_LINK_TYPES):
                continue
            linked = link.get("outwardIssue") or link.get("inwardIssue")
            issue_type = (((linked or {}).get("fields") or {}).get("issuetype") or {}).get("name")
            if linked and issue_type in PARENT_ISSUE_TYPES:
                logger.info("Found parent via link (%s): %s", link_type, linked.get("key"))
                return linked

        logger.info("No parent issue found for %s", key)
        return None

    async def find_run_id(self, key: str) -> Optional[str]:
        parent = await self.find_parent_issue(key)
        if not parent:
            logger.info("No parent issue found, cannot find Run ID")
            return None

        parent_key = parent["key"]
        logger.info("Searching for Run ID in parent: %s", parent_key)

        if self.run_id_field:
            details = await self.get_issue(parent_key)
            run_id = field_to_text((details.get("fields") or {}).get(self.run_id_field))
            if run_id:
                logger.info("Found Run ID in custom field: %s", run_id)
                return run_id

        for comment in await self.get_comments(parent_key):
            run_id = find_run_id_in_text(text_from_adf(comment.get("body")))
            if run_id:
                logger.info("Found Run ID in comments: %s", run_id)
                return run_id

        logger.info("Run ID not found in custom field or comments")
        return None

    async def link_issues(self, inward_key: str, outward_key: str, link_type: str = "Blocks") -> None:
        logger.info("Linking %s to %s with type %s", outward_key, inward_key, link_type)
        await self._request(
            "POST",
            "rest/api/3/issueLink",
            json={
                "type": {"name": link_type},
                "inwardIssue": {"key": inward_key},
                "outwardIssue": {"key": outward_key},
            },
        )
