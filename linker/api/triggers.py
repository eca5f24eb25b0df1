"""
POST /api/trigger/*
===================
Run a workflow inline for one issue and return its WorkflowResult.

Missing parameters → 400. Workflow failures come back as a result with
success=false; only unexpected exceptions turn into a 500.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from linker.agents.workflow import BugWorkflow, WorkflowResult
from linker.api.dependencies import get_workflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trigger", tags=["Triggers"])


class TriggerRequest(BaseModel):
    issueKey: Optional[str] = None


class CorrectionTriggerRequest(BaseModel):
    issueKey: Optional[str] = None
    comment: Optional[str] = None


def _require_key(body: TriggerRequest) -> str:
    if not body.issueKey:
        raise HTTPException(status_code=400, detail="issueKey is required")
    return body.issueKey


async def _run(name: str, issue_key: str, call) -> WorkflowResult:
    logger.info("Manual trigger: %s for %s", name, issue_key)
    try:
        return await call
    except Exception as exc:
        logger.error("Manual trigger failed for %s: %s", issue_key, exc, exc_info=True)
        raise HTTPException(status_code=500, detail=f"{name} failed: {exc}")


@router.post("/bug-created", response_model=WorkflowResult)
async def trigger_bug_created(body: TriggerRequest, workflow: BugWorkflow = Depends(get_workflow)):
    key = _require_key(body)
    return await _run("Bug Created", key, workflow.handle_bug_created(key))


@router.post("/bug-resolved", response_model=WorkflowResult)
async def trigger_bug_resolved(body: TriggerRequest, workflow: BugWorkflow = Depends(get_workflow)):
    key = _require_key(body)
    return await _run("Bug Resolved", key, workflow.handle_bug_resolved(key))


@router.post("/bug-reopened", response_model=WorkflowResult)
async def trigger_bug_reopened(body: TriggerRequest, workflow: BugWorkflow = Depends(get_workflow)):
    key = _require_key(body)
    return await _run("Bug Re-opened", key, workflow.handle_bug_reopened(key))


@router.post("/correction", response_model=WorkflowResult)
async def trigger_correction(
    body: CorrectionTriggerRequest, workflow: BugWorkflow = Depends(get_workflow)
):
    if not body.issueKey or not body.comment:
        raise HTTPException(status_code=400, detail="issueKey and comment are required")
    return await _run("Correction", body.issueKey, workflow.handle_correction(body.issueKey, body.comment))
