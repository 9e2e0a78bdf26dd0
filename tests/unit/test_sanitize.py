import pytest

from app.core.exceptions import ParseFailure
from app.services.llm import extract_json
from app.services.llm import sanitize_completion


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("```json\n{\"a\": 1}\n```", '{"a": 1}'),
        ("```html\n<html></html>\n```", "<html></html>"),
        ("```markdown\n# Title\n\nBody\n```", "# Title\n\nBody"),
        ('"""\n# Report\n"""', "# Report"),
        ("```\nplain\n```", "plain"),
        ("  \n```\nplain\n```  \n", "plain"),
        ("```Hello world```", "Hello world"),
        ("```html<!DOCTYPE html><html></html>```", "<!DOCTYPE html><html></html>"),
        ("```markdown# Title```", "# Title"),
        ("```HTML <p>x</p>\n```", "<p>x</p>"),
        ("```htmlx```", "htmlx"),
        ("no markers here", "no markers here"),
        ("keeps ``` inner fences ``` intact", "keeps ``` inner fences ``` intact"),
    ],
)
def test_sanitize_completion_strips_wrapping_markers(raw, expected):
    assert sanitize_completion(raw) == expected


def test_sanitize_completion_strips_nested_wrappers():
    assert sanitize_completion('"""\n```markdown\n# Doc\n```\n"""') == "# Doc"


@pytest.mark.parametrize(
    "raw",
    [
        "```json\n{}\n```",
        "```\n```json\nx\n```\n```",
        "``````",
        '""""""',
        "text with trailing ```",
        "   spaced   ",
        "",
    ],
)
def test_sanitize_completion_is_idempotent(raw):
    once = sanitize_completion(raw)
    assert sanitize_completion(once) == once


def test_extract_json_perfect_match():
    assert extract_json('{"key": "value", "number": 123}') == {"key": "value", "number": 123}


def test_extract_json_with_markdown_fences():
    text = 'Some leading text\n```json\n{"key": "value", "nested": {"foo": "bar"}}\n```\nTrailing text.'
    assert extract_json(text) == {"key": "value", "nested": {"foo": "bar"}}


def test_extract_json_embedded_in_text():
    text = 'Here is some JSON: {"name": "Test", "valid": true} and some more text.'
    assert extract_json(text) == {"name": "Test", "valid": True}


def test_extract_json_no_json_structure():
    with pytest.raises(ParseFailure, match="No JSON object or array marker"):
        extract_json("This is just a plain string without any JSON.")


def test_extract_json_malformed():
    with pytest.raises(ParseFailure):
        extract_json('prefix {"key": "value", "unterminated" "True" } suffix')
