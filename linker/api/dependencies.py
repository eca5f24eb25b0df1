"""
Shared service instances for the HTTP layer.

Each getter builds its object once per process. Tests swap them out with
``app.dependency_overrides``.
"""
import logging
from functools import lru_cache
from typing import Optional

from linker.agents.matching_engine import MatchingEngine
from linker.agents.workflow import BugWorkflow
from linker.clients.base import TestManagementClient, create_test_management_client
from linker.clients.jira_client import JiraClient
from linker.core import config
from linker.llm.client import LLMClient
from linker.services.cache_service import TestCaseCache
from linker.services.correction_store import CorrectionStore

logger = logging.getLogger(__name__)


@lru_cache
def get_store() -> CorrectionStore:
    return CorrectionStore.from_path()


@lru_cache
def get_cache() -> TestCaseCache:
    cache = TestCaseCache()
    loaded = cache.load_from_disk()
    logger.info("Cache service initialized (%d entries loaded)", loaded)
    return cache


@lru_cache
def get_tracker() -> JiraClient:
    return JiraClient()


@lru_cache
def get_tm_client() -> TestManagementClient:
    return create_test_management_client(jira=get_tracker(), cache=get_cache())


@lru_cache
def get_workflow() -> BugWorkflow:
    store = get_store()
    engine = MatchingEngine(llm=LLMClient(), store=store)
    logger.info(
        "Matching engine ready (%s mode, learning %s)",
        engine.strategy.name, "on" if store.learning_enabled else "off",
    )
    return BugWorkflow(tracker=get_tracker(), tm_client=get_tm_client(), engine=engine, store=store)


def get_webhook_secret() -> Optional[str]:
    return config.WEBHOOK_SECRET
