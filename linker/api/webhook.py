"""
POST /webhook/jira
==================
Receives Jira webhooks, answers 202 at once and runs the matching workflow
in a background task.

Routing:
    status  Queued Merged → Ready for Dev   → handle_bug_reopened
    status  * → Ready for Dev               → handle_bug_created
    status  * → Queued Merged to Release    → handle_bug_resolved
    comment containing CORRECT: or ADD:     → handle_correction
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request

from linker.agents.workflow import BugWorkflow
from linker.api.dependencies import get_webhook_secret, get_workflow
from linker.core import config
from linker.parser.adf import text_from_adf
from linker.parser.correction_parser import is_correction_comment

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhook"])

BUG_CREATED = "bug_created"
BUG_RESOLVED = "bug_resolved"
BUG_REOPENED = "bug_reopened"
CORRECTION = "correction"

# (workflow, issue key, comment text)
WebhookAction = Tuple[str, str, Optional[str]]


def _status_change(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for item in (payload.get("changelog") or {}).get("items") or []:
        if item.get("field") == "status":
            return item
    return None


def route_webhook(payload: Dict[str, Any]) -> List[WebhookAction]:
    """Workflows a webhook payload should trigger, in order."""
    event = payload.get("webhookEvent", "")
    issue_key = (payload.get("issue") or {}).get("key")
    if not issue_key:
        return []

    actions: List[WebhookAction] = []
    if event == "jira:issue_updated":
        change = _status_change(payload)
        if change:
            old, new = change.get("fromString"), change.get("toString")
            logger.info("Status of %s changed from %s to %s", issue_key, old, new)
            if new == config.STATUS_READY_FOR_DEV and old == config.STATUS_QUEUED_MERGED:
                actions.append((BUG_REOPENED, issue_key, None))
            elif new == config.STATUS_READY_FOR_DEV:
                actions.append((BUG_CREATED, issue_key, None))
            elif new == config.STATUS_QUEUED_MERGED:
                actions.append((BUG_RESOLVED, issue_key, None))

    if event in ("comment_created", "jira:issue_updated") and payload.get("comment"):
        text = text_from_adf(payload["comment"].get("body"))
        if is_correction_comment(text):
            logger.info("Detected correction comment on %s", issue_key)
            actions.append((CORRECTION, issue_key, text))
    return actions


async def process_webhook(actions: List[WebhookAction], workflow: BugWorkflow) -> None:
    for name, issue_key, text in actions:
        logger.info("Triggering %s workflow for %s", name, issue_key)
        try:
            if name == BUG_CREATED:
                await workflow.handle_bug_created(issue_key)
            elif name == BUG_RESOLVED:
                await workflow.handle_bug_resolved(issue_key)
            elif name == BUG_REOPENED:
                await workflow.handle_bug_reopened(issue_key)
            elif name == CORRECTION:
                await workflow.handle_correction(issue_key, text or "")
        except Exception as e:  # background task: nobody left to propagate to
            logger.error("Async webhook processing failed for %s: %s", issue_key, e, exc_info=True)


@router.post("/webhook/jira", status_code=202)
async def jira_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_webhook_secret: Optional[str] = Header(default=None),
    secret: Optional[str] = Depends(get_webhook_secret),
    workflow: BugWorkflow = Depends(get_workflow),
):
    logger.info("Received JIRA webhook")
    if secret and x_webhook_secret != secret:
        logger.warning("Invalid webhook secret")
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body must be JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    logger.info("Webhook event type: %s", payload.get("webhookEvent"))
    actions = route_webhook(payload)
    if actions:
        background_tasks.add_task(process_webhook, actions, workflow)
    return {
        "message": "Webhook received, processing...",
        "workflows": [name for name, _, _ in actions],
    }
