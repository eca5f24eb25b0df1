"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    TEST_MANAGEMENT_SYSTEM   — "testrail" (default) or "xray"
    JIRA_BASE_URL            — Jira Cloud base URL
    JIRA_EMAIL / JIRA_API_TOKEN — Jira basic-auth credentials
    JIRA_TESTRAIL_RUN_FIELD  — custom field on the parent task holding the run id
    JIRA_WCAG_CATEGORY_FIELD — custom field holding an explicit category hint
    TESTRAIL_BASE_URL        — TestRail base URL
    OPENAI_API_KEY           — Primary reasoning-model provider
    GROQ_API_KEY             — Fallback provider (OpenAI-compatible)
    GEMINI_API_KEY           — Second fallback provider
    DRY_RUN_MODE             — Log test-management writes instead of sending them
    LOG_LEVEL / LOG_DIR     — Root log level and directory for the rotated log file

Matching Thresholds:
    AI_CONFIDENCE_THRESHOLD drives the "proceed but warn" policy: matches below
    it are still linked, but the bug receives a verification comment.
    MULTI_MATCH_THRESHOLD filters multi-match entries before deduplication.

Timeouts:
    MATCH_TIMEOUT_SECONDS bounds the whole reasoning-model call (all providers).
    STATUS_LOOKUP_TIMEOUT_SECONDS bounds each defect status lookup in the
    open-defect gate; a timed-out lookup counts as "still open".
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Test management system selection
TEST_MANAGEMENT_SYSTEM = os.getenv("TEST_MANAGEMENT_SYSTEM", "testrail").lower()

# Jira
JIRA_BASE_URL = os.getenv("JIRA_BASE_URL", "")
JIRA_EMAIL = os.getenv("JIRA_EMAIL", "")
JIRA_API_TOKEN = os.getenv("JIRA_API_TOKEN", "")
JIRA_RUN_ID_FIELD = os.getenv("JIRA_TESTRAIL_RUN_FIELD") or os.getenv("JIRA_RUN_ID_CUSTOM_FIELD")
JIRA_CATEGORY_FIELD = os.getenv("JIRA_WCAG_CATEGORY_FIELD")

# Jira workflow status names
STATUS_OPEN = os.getenv("STATUS_OPEN", "Open")
STATUS_REOPENED = os.getenv("STATUS_REOPENED", "Reopened")
STATUS_READY_FOR_DEV = os.getenv("STATUS_READY_FOR_DEV", "Ready for Dev")
STATUS_QUEUED_MERGED = os.getenv("STATUS_QUEUED_MERGED", "Queued Merged to Release")

# Statuses that keep a defect "open" for the passing gate
OPEN_STATUSES: frozenset[str] = frozenset({
    STATUS_OPEN,
    STATUS_REOPENED,
    STATUS_READY_FOR_DEV,
})

# TestRail
TESTRAIL_BASE_URL = os.getenv("TESTRAIL_BASE_URL", "")
TESTRAIL_USERNAME = os.getenv("TESTRAIL_USERNAME", "")
TESTRAIL_PASSWORD = os.getenv("TESTRAIL_PASSWORD") or os.getenv("TESTRAIL_API_KEY", "")
TESTRAIL_RATE_LIMIT_MS = int(os.getenv("TESTRAIL_RATE_LIMIT_MS", 250))
TESTRAIL_STATUS_PASSED = int(os.getenv("TESTRAIL_STATUS_PASSED", 1))
TESTRAIL_STATUS_FAILED = int(os.getenv("TESTRAIL_STATUS_FAILED", 5))

# Xray (server/DC REST, lives inside Jira)
XRAY_BASE_URL = os.getenv("XRAY_BASE_URL") or JIRA_BASE_URL
XRAY_EMAIL = os.getenv("XRAY_EMAIL") or JIRA_EMAIL
XRAY_API_TOKEN = os.getenv("XRAY_API_TOKEN") or JIRA_API_TOKEN
XRAY_EXECUTION_KEY_FIELD = os.getenv("XRAY_EXECUTION_KEY_FIELD")
XRAY_RATE_LIMIT_MS = int(os.getenv("XRAY_RATE_LIMIT_MS", 250))
XRAY_STATUS_PASS = os.getenv("XRAY_STATUS_PASS", "PASS")
XRAY_STATUS_FAIL = os.getenv("XRAY_STATUS_FAIL", "FAIL")

# Reasoning-model providers
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

# Provider health cooldown
PROVIDER_COOLDOWN_THRESHOLD = int(os.getenv("PROVIDER_COOLDOWN_THRESHOLD", 3))
PROVIDER_COOLDOWN_SKIP_COUNT = int(os.getenv("PROVIDER_COOLDOWN_SKIP_COUNT", 5))

# Matching
AI_CONFIDENCE_THRESHOLD = float(os.getenv("AI_CONFIDENCE_THRESHOLD", 0.7))
LEARNING_ENABLED = _env_bool("ENABLE_AI_LEARNING", True)
MULTI_MATCH_ENABLED = _env_bool("ENABLE_MULTI_MATCH", False)
MULTI_MATCH_THRESHOLD = float(os.getenv("MULTI_MATCH_THRESHOLD", 0.75))

# Timeouts (seconds)
MATCH_TIMEOUT_SECONDS = float(os.getenv("MATCH_TIMEOUT_SECONDS", 120))
STATUS_LOOKUP_TIMEOUT_SECONDS = float(os.getenv("STATUS_LOOKUP_TIMEOUT_SECONDS", 30))
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 30))

# Persistence
LEARNING_DB_PATH = os.getenv("LEARNING_DB_PATH", os.path.join("learning-data", "learning.db"))
CACHE_DIR = os.getenv("CACHE_DIR", "cache")
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", 24 * 60 * 60))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_BACKUP_DAYS = int(os.getenv("LOG_BACKUP_DAYS", 14))

# Server
DRY_RUN_MODE = _env_bool("DRY_RUN_MODE", False)
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET") or os.getenv("JIRA_WEBHOOK_SECRET")
PORT = int(os.getenv("PORT", 3000))
