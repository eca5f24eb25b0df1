"""
LLM Prompts
===========
Centralised store for the matcher's system and user prompts.

Prompt Design Rules:
    - The bug DESCRIPTION is the primary matching signal; the summary is a
      categorical label ("508c | Page Titled | Home") and is presented as such
    - Every candidate is listed with its test id AND case id; the model must
      copy ids verbatim (invented ids are rejected by the engine)
    - Steps are JSON-encoded and truncated to MAX_STEPS_CHARS to keep large
      runs inside the context window
    - Output is a single JSON object, enforced by response_format on the call

Multi-match:
    - One bug description may list several independent failures
    - Issues that would fail the same test are grouped into one entry
    - Each test appears at most once in the reply
"""
import json
from typing import Iterable

from linker.core.constants import MAX_STEPS_CHARS
from linker.models.bug_report import BugReport
from linker.models.test_case import TestCaseCandidate


# ---------------------------------------------------------------------------
# System Prompts
# ---------------------------------------------------------------------------
SYSTEM_PROMPT = (
    "You are an expert in Section 508 / WCAG accessibility testing. Your task is "
    "to match bug reports to the most relevant test cases based on the bug "
    "description and test case details. Focus on identifying which test case "
    "would have caught this bug during testing. Always answer with a single JSON "
    "object and copy test ids exactly as listed."
)


# ---------------------------------------------------------------------------
# Shared blocks
# ---------------------------------------------------------------------------
def format_bug(bug: BugReport) -> str:
    description = bug.description.strip() or "No description provided"
    lines = [
        "**Bug Description (primary signal):**",
        description,
        "",
        f"**Bug Title (category label only):** {bug.summary}",
    ]
    if bug.category:
        lines.append(f"**Category hint:** {bug.category}")
    return "\n".join(lines)


def format_candidate(index: int, tc: TestCaseCandidate) -> str:
    steps = json.dumps(tc.steps, ensure_ascii=False)[:MAX_STEPS_CHARS]
    return (
        f"[{index}] Test ID: {tc.test_id} | Case ID: {tc.case_id}\n"
        f"Title: {tc.title}\n"
        f"Steps: {steps}\n"
        f"Preconditions: {tc.preconditions}\n"
        f"Expected Result: {tc.expected_result}\n"
        "---"
    )


def format_candidates(candidates: Iterable[TestCaseCandidate]) -> str:
    return "\n".join(format_candidate(i, tc) for i, tc in enumerate(candidates))


# ---------------------------------------------------------------------------
# User Prompts
# ---------------------------------------------------------------------------
def build_single_match_prompt(bug: BugReport, candidates: list[TestCaseCandidate]) -> str:
    return f"""I need you to match this accessibility bug to the most relevant test case.

{format_bug(bug)}

**Test Cases ({len(candidates)}):**
{format_candidates(candidates)}

**Instructions:**
1. Read the bug description first; the title only names a category
2. Compare against each test case's title, steps, and expected results
3. Identify which test case would have detected this bug during execution
4. Consider 508c accessibility testing patterns and terminology
5. Provide a confidence score (0.0 to 1.0)

**Response Format (JSON):**
{{
  "test_id": "<the test_id from the best matching test case>",
  "case_id": "<the case_id from the best matching test case>",
  "title": "<the title of the matching test case>",
  "confidence": <float between 0.0 and 1.0>,
  "reasoning": "<brief explanation of why this test case matches the bug>"
}}

Respond with ONLY the JSON object, no additional text.
"""


def build_multi_match_prompt(bug: BugReport, candidates: list[TestCaseCandidate]) -> str:
    return f"""This accessibility bug may describe SEVERAL independent issues. Match each
issue to the test case that would have caught it.

{format_bug(bug)}

**Test Cases ({len(candidates)}):**
{format_candidates(candidates)}

**Instructions:**
1. Split the description into distinct accessibility issues
2. For each issue find the test case that would have detected it
3. If several issues would fail the SAME test case, group them into ONE entry
   and explain every grouped issue in its reasoning
4. Return each test case at most once
5. Provide a confidence score (0.0 to 1.0) per entry

**Response Format (JSON):**
{{
  "matches": [
    {{
      "test_id": "<test_id from the list>",
      "case_id": "<case_id from the list>",
      "title": "<title of the test case>",
      "confidence": <float between 0.0 and 1.0>,
      "reasoning": "<which issue(s) this test catches and why>"
    }}
  ]
}}

Respond with ONLY the JSON object, no additional text.
"""
