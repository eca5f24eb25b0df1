"""
Constants
Centralised storage for matching thresholds, word lists, and comment markers.
"""
SERVICE_NAME = "Jira-TestRail Accessibility Linker"

# Learned-match thresholds (keyword similarity, 0.0–1.0)
SINGLE_LEARNED_THRESHOLD = 0.6
MULTI_LEARNED_THRESHOLD = 0.5

# Learned-match confidence bands: base + 0.15 * similarity
CORRECTION_CONFIDENCE_BASE = 0.85
MATCH_RECORD_CONFIDENCE_BASE = 0.80
LEARNED_CONFIDENCE_SPAN = 0.15

# Keyword extraction
MIN_KEYWORD_LENGTH = 4
STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "is", "are", "was", "were", "be", "been", "being",
})

# Title segments that never name a category ("508c | Test | ...")
IGNORED_TITLE_SEGMENTS = frozenset({"test", "project", "508c", "bug", "issue"})

# Steps text is truncated in prompts to keep large runs under the context window
MAX_STEPS_CHARS = 500

CORRECTION_SYNTAX_HELP = "CORRECT: C1234567[, C1234568] or ADD: C1234567[, C1234568]"
