"""
Tests for ADF flattening and custom-field normalization.
"""
import pytest

from linker.parser.adf import description_from_adf, text_from_adf
from linker.parser.field_values import field_to_text


def _text(value):
    return {"type": "text", "text": value}


def _para(*texts):
    return {"type": "paragraph", "content": [_text(t) for t in texts]}


def _doc(*nodes):
    return {"type": "doc", "version": 1, "content": list(nodes)}


def _row(*cells, header=False):
    cell_type = "tableHeader" if header else "tableCell"
    return {"type": "tableRow", "content": [
        {"type": cell_type, "content": [_para(c)] if c else []} for c in cells
    ]}


def test_text_from_adf_joins_text_nodes():
    body = _doc(_para("CORRECT:", "C1234"), _para("thanks"))
    assert text_from_adf(body) == "CORRECT: C1234 thanks"

def test_text_from_adf_passes_strings_and_ignores_junk():
    assert text_from_adf("ADD: C1") == "ADD: C1"
    assert text_from_adf(None) == ""
    assert text_from_adf({"type": "doc"}) == ""


def test_description_paragraphs_and_lists():
    description = _doc(
        {"type": "heading", "content": [_text("Steps")]},
        {"type": "orderedList", "content": [
            {"type": "listItem", "content": [_para("Open Home")]},
            {"type": "listItem", "content": [_para("Read the title")]},
        ]},
        {"type": "bulletList", "content": [
            {"type": "listItem", "content": [_para("Chrome")]},
        ]},
        _para("Title is generic."),
    )
    assert description_from_adf(description) == (
        "Steps\n1. Open Home\n2. Read the title\n• Chrome\nTitle is generic."
    )

def test_description_table_keeps_actual_column():
    table = {"type": "table", "content": [
        _row("No", "Expected", "Actual", header=True),
        _row("1", "Descriptive title", "Title is 'Home'"),
        _row("2", "Focus visible", "No focus ring"),
    ]}
    assert description_from_adf(_doc(table)) == "1. Title is 'Home'\n2. No focus ring"

def test_description_table_falls_back_to_no_column_then_all_cells():
    by_no = {"type": "table", "content": [
        _row("No", "Notes", header=True),
        _row("Missing alt text", "logo"),
    ]}
    assert description_from_adf(_doc(by_no)) == "1. Missing alt text"

    no_header = {"type": "table", "content": [
        _row("Page", "Issue", header=True),
        _row("Home", "Low contrast"),
        _row("", ""),
    ]}
    assert description_from_adf(_doc(no_header)) == "1. Home - Low contrast"

def test_description_plain_string_and_empty():
    assert description_from_adf("already text") == "already text"
    assert description_from_adf(None) == ""
    assert description_from_adf({}) == ""


@pytest.mark.parametrize("value, expected", [
    ("  1234 ", "1234"),
    (1234, "1234"),
    (1234.0, "1234"),
    (_doc(_para("5678")), "5678"),
    ({"value": "Page Titled"}, "Page Titled"),
    ({"id": "10042"}, "10042"),
    ([{"value": "Keyboard"}, {"value": "Focus"}], "Keyboard"),
    ("", None),
    ([], None),
    (None, None),
    (True, None),
])
def test_field_to_text(value, expected):
    assert field_to_text(value) == expected
