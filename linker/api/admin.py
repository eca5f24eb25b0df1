"""
Statistics, cache management and diagnostics.

    GET  /api/stats                     correction store statistics
    GET  /api/cache/stats               cached run listings
    POST /api/cache/clear               one run (runId) or everything
    POST /api/cache/refresh             re-fetch one run's listing
    GET  /api/test/find-run/{key}       run id discovery for an issue
    GET  /api/test/run/{run_id}/tests   first ten candidates of a run
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from linker.api.dependencies import get_cache, get_store, get_tm_client
from linker.clients.base import TestManagementClient
from linker.core.errors import LinkerError
from linker.services.cache_service import TestCaseCache
from linker.services.correction_store import CorrectionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Admin"])


class CacheRequest(BaseModel):
    runId: Optional[str] = None


@router.get("/stats")
def get_stats(store: CorrectionStore = Depends(get_store)):
    # Plain def: FastAPI runs it in its threadpool, SQLite reads block
    return store.get_statistics()


@router.get("/cache/stats")
async def cache_stats(cache: TestCaseCache = Depends(get_cache)):
    return cache.get_stats()


@router.post("/cache/clear")
async def cache_clear(body: Optional[CacheRequest] = None, cache: TestCaseCache = Depends(get_cache)):
    run_id = body.runId if body else None
    if run_id:
        cache.delete(TestCaseCache.tests_key(run_id))
        return {"success": True, "message": f"Cache cleared for run {run_id}"}
    cache.clear_all()
    return {"success": True, "message": "All cache cleared"}


@router.post("/cache/refresh")
async def cache_refresh(body: CacheRequest, tm_client: TestManagementClient = Depends(get_tm_client)):
    if not body.runId:
        raise HTTPException(status_code=400, detail="runId is required")
    logger.info("Refreshing cache for run %s", body.runId)
    try:
        tests = await tm_client.get_tests_with_details(body.runId, force_refresh=True)
    except LinkerError as e:
        logger.error("Failed to refresh cache: %s", e.message)
        raise HTTPException(status_code=502, detail=e.to_dict())
    return {"success": True, "message": f"Cache refreshed for run {body.runId}", "testCount": len(tests)}


@router.get("/test/find-run/{issue_key}")
async def find_run(issue_key: str, tm_client: TestManagementClient = Depends(get_tm_client)):
    try:
        run_id = await tm_client.find_run_id(issue_key)
    except LinkerError as e:
        logger.error("Run lookup failed for %s: %s", issue_key, e.message)
        raise HTTPException(status_code=502, detail=e.to_dict())
    return {
        "issueKey": issue_key,
        "runId": run_id,
        "found": bool(run_id),
        "system": tm_client.system_name,
    }


@router.get("/test/run/{run_id}/tests")
async def preview_run(run_id: str, tm_client: TestManagementClient = Depends(get_tm_client)):
    try:
        tests = await tm_client.get_tests_with_details(run_id)
    except LinkerError as e:
        raise HTTPException(status_code=502, detail=e.to_dict())
    return {"runId": run_id, "count": len(tests), "tests": [t.model_dump() for t in tests[:10]]}
