import uvicorn
import time
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from linker.api.admin import router as admin_router
from linker.api.dependencies import get_workflow
from linker.api.triggers import router as triggers_router
from linker.api.webhook import router as webhook_router
from linker.core import config
from linker.core.constants import SERVICE_NAME
from linker.utils.logging_config import setup_logging

setup_logging()
logger = logging.getLogger("main")

# Polled by uptime checks every few seconds; logged at DEBUG only
QUIET_PATHS = {"/health"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=" * 49)
    logger.info(SERVICE_NAME)
    logger.info("=" * 49)
    logger.info(f"Test management system: {config.TEST_MANAGEMENT_SYSTEM}")
    logger.info(f"Mode: {'DRY RUN' if config.DRY_RUN_MODE else 'PRODUCTION'}")
    logger.info(f"Webhook secret: {'required' if config.WEBHOOK_SECRET else 'not set'}")
    logger.info(f"Health check: http://localhost:{config.PORT}/health")
    yield
    # Only close clients that a request actually created
    if get_workflow.cache_info().currsize:
        await get_workflow().close()
        logger.info("HTTP clients closed")


app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)

# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        path = request.url.path
        level = logging.DEBUG if path in QUIET_PATHS else logging.INFO
        client_host = request.client.host if request.client else "unknown"
        logger.log(level, f"Incoming: {request.method} {path} from {client_host}")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Request failed: {request.method} {path} - Error: {e}")
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        if response.status_code >= 500:
            level = logging.ERROR
        logger.log(
            level,
            f"Outgoing: {request.method} {path} - Status: {response.status_code} - Time: {elapsed_ms:.2f}ms",
        )
        return response

app.add_middleware(LoggingMiddleware)

# ---------------------------------------------------------------------------
# CORS: Jira automation rules and local tooling call the service directly
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

@app.get("/health")
async def health_check():
    return {"status": "ok", "service": SERVICE_NAME, "dry_run": config.DRY_RUN_MODE}

app.include_router(webhook_router)
app.include_router(triggers_router)
app.include_router(admin_router)


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT)
