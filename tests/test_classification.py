import pytest

from linker.parser.classification import IssueCategory, categories_compatible, classify_issue


@pytest.mark.parametrize("text, expected", [
    ("Focus not visible on search button", IssueCategory.FOCUS),
    ("Keyboard users cannot reach the menu", IssueCategory.FOCUS),
    ("508c | Page Titled | Home", IssueCategory.TITLE),
    ("Current page title is generic Home", IssueCategory.TITLE),
    ("Heading level skips from H1 to H3 - wrong level", IssueCategory.HEADING_LEVEL),
    ("Heading level is incorrect on the summary page", IssueCategory.HEADING_LEVEL),
    ("Section heading is missing", IssueCategory.HEADING_MISSING),
    ("Visual heading is not programmatically identified", IssueCategory.HEADING_MISSING),
    ("Headings present on the page", IssueCategory.HEADING_GENERIC),
    ("Page lang attribute is not set", IssueCategory.LANGUAGE),
    ("Logo image has no alt text", IssueCategory.IMAGE),
    ("Data table has no column headers", IssueCategory.TABLE),
    ("Link text 'click here' is ambiguous", IssueCategory.LINK),
    ("Email input has no label", IssueCategory.FORM),
    ("Insufficient colour contrast on footer text", IssueCategory.COLOR),
    ("Something odd happens", IssueCategory.UNKNOWN),
    ("", IssueCategory.UNKNOWN),
])
def test_classify_issue(text, expected):
    assert classify_issue(text) == expected

def test_heading_rules_win_over_other_topics():
    # Mentions a link and focus, but is about headings
    assert classify_issue("Heading for the link list is missing, focus order fine") == IssueCategory.HEADING_MISSING

def test_heading_missing_and_level_are_distinct():
    missing = classify_issue("Heading is missing on the account page")
    level = classify_issue("Heading level incorrect on the account page")
    assert missing != level

def test_categories_compatible():
    assert categories_compatible(None, IssueCategory.FOCUS)
    assert categories_compatible("unknown", IssueCategory.FOCUS)
    assert categories_compatible("focus", IssueCategory.FOCUS)
    assert not categories_compatible("focus", IssueCategory.HEADING_LEVEL)
    assert not categories_compatible("heading-level", IssueCategory.HEADING_MISSING)
