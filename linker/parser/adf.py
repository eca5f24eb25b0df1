"""
ADF
===
Flattens Atlassian Document Format (ADF) bodies to plain text.

Two flavours are needed:
    text_from_adf        — every text node joined with spaces (comments, fields)
    description_from_adf — line-preserving rendering of bug descriptions

Tables in bug descriptions follow the tester template (No / Expected / Actual);
only the "Actual" column carries the observed failure, so it is the only one
kept. Without an "Actual" header the "No" column is used, and without either
every non-empty cell of a row is joined with " - ".
"""
from typing import Any, List, Optional

_LIST_TYPES = ("orderedList", "bulletList")


def _is_doc(body: Any) -> bool:
    return isinstance(body, dict) and isinstance(body.get("content"), list)


def text_from_adf(body: Any) -> str:
    """Concatenate all text nodes of *body*; plain strings pass through."""
    if isinstance(body, str):
        return body
    if not _is_doc(body):
        return ""

    parts: List[str] = []

    def walk(node: dict) -> None:
        if node.get("type") == "text":
            parts.append(node.get("text", ""))
        for child in node.get("content") or []:
            walk(child)

    for node in body["content"]:
        walk(node)
    return " ".join(p for p in parts if p)


def _inline_text(node: dict) -> str:
    if node.get("type") == "text":
        return node.get("text") or ""
    return "".join(_inline_text(child) for child in node.get("content") or [])


def _list_item_text(node: dict) -> str:
    if node.get("type") != "listItem":
        return ""
    return " ".join(_inline_text(child) for child in node.get("content") or []).strip()


def _find_column(headers: List[str]) -> Optional[int]:
    for index, header in enumerate(headers):
        if "actual" in header.lower():
            return index
    for index, header in enumerate(headers):
        if header.strip().lower() == "no":
            return index
    return None


def _table_lines(table: dict) -> List[str]:
    lines: List[str] = []
    column: Optional[int] = None

    for row_index, row in enumerate(table.get("content") or []):
        if row.get("type") != "tableRow":
            continue
        cells = [
            " ".join(_inline_text(c) for c in cell.get("content") or []).strip()
            for cell in row.get("content") or []
            if cell.get("type") in ("tableCell", "tableHeader")
        ]
        if row_index == 0:
            column = _find_column(cells)
            continue

        if column is not None and column < len(cells) and cells[column]:
            lines.append(f"{row_index}. {cells[column]}")
        else:
            non_empty = [c for c in cells if c]
            if non_empty:
                lines.append(f"{row_index}. {' - '.join(non_empty)}")
    return lines


def description_from_adf(description: Any) -> str:
    """Render a description to newline-separated text."""
    if not description:
        return ""
    if isinstance(description, str):
        return description
    if not _is_doc(description):
        return ""

    lines: List[str] = []

    def walk(node: dict) -> None:
        node_type = node.get("type")
        if node_type in ("paragraph", "heading"):
            text = _inline_text(node).strip()
            if text:
                lines.append(text)
        elif node_type == "table":
            lines.extend(_table_lines(node))
        elif node_type in _LIST_TYPES:
            for index, item in enumerate(node.get("content") or []):
                prefix = f"{index + 1}. " if node_type == "orderedList" else "• "
                text = _list_item_text(item)
                if text:
                    lines.append(prefix + text)
        else:
            for child in node.get("content") or []:
                walk(child)

    for node in description["content"]:
        walk(node)
    return "\n".join(lines)
