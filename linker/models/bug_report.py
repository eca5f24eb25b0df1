"""
Bug Report Model
================
Pydantic model for an accessibility bug fetched from the issue tracker.
Re-fetched fresh per workflow invocation and never mutated afterwards.

Fields:
    key          — issue key (e.g. "ROLL-1396"), unique in the tracker
    summary      — short title, often "508c | <category> | <page>"
    description  — free-form text flattened from rich text; primary matching signal
    category     — optional explicit classification hint from a custom field
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict


class BugReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    summary: str = ""
    description: str = ""
    category: Optional[str] = None

    @property
    def text(self) -> str:
        """Summary and description joined, as used for keyword similarity."""
        return f"{self.summary} {self.description}".strip()
