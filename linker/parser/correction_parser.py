"""
Correction Parser
=================
Parses user correction comments posted on a bug.

Accepted forms (case-insensitive, ``C`` prefix optional):
    CORRECT: C1234567[, C1234568]   — replace every prior match
    ADD: C1234567[, C1234568]       — keep prior matches, add these
"""
import re
from dataclasses import dataclass, field
from typing import List

from linker.core.errors import InvalidCorrectionSyntax

MODE_CORRECT = "CORRECT"
MODE_ADD = "ADD"

_PATTERNS = {
    mode: re.compile(rf"\b{mode}:\s*([C\d,\s]+)", re.I)
    for mode in (MODE_CORRECT, MODE_ADD)
}
_CASE_ID_RE = re.compile(r"C?(\d+)", re.I)


@dataclass(frozen=True)
class CorrectionRequest:
    mode: str
    case_ids: List[str] = field(default_factory=list)

    @property
    def replaces(self) -> bool:
        return self.mode == MODE_CORRECT


def is_correction_comment(text: str) -> bool:
    """Cheap check used by the webhook before dispatching a correction."""
    upper = (text or "").upper()
    return "CORRECT:" in upper or "ADD:" in upper


def parse_correction(text: str) -> CorrectionRequest:
    """
    Parse a correction comment into a mode and a list of bare case ids.

    ADD wins when the text mentions both keywords. Raises
    InvalidCorrectionSyntax when neither keyword is followed by an id list.
    """
    upper = (text or "").upper()
    mode = MODE_ADD if "ADD:" in upper else MODE_CORRECT

    match = _PATTERNS[mode].search(text or "")
    if not match:
        raise InvalidCorrectionSyntax()

    case_ids: List[str] = []
    for case_id in _CASE_ID_RE.findall(match.group(1)):
        if case_id not in case_ids:
            case_ids.append(case_id)

    if not case_ids:
        raise InvalidCorrectionSyntax("No valid case IDs found")
    return CorrectionRequest(mode=mode, case_ids=case_ids)
