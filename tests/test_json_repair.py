from __future__ import annotations

import pytest

from app.services.json_repair import (
    PARSE_ERROR_NOTE,
    extract_and_parse,
    sanitize_json,
    strip_code_fence,
)


def test_strip_code_fence_removes_markdown_wrapper():
    text = '```json\n{"queries": ["a"]}\n```'
    assert strip_code_fence(text) == '{"queries": ["a"]}'


def test_parses_fenced_json():
    assert extract_and_parse('```json\n{"queries": ["a", "b"]}\n```') == {"queries": ["a", "b"]}


def test_drops_trailing_commas():
    text = '{"findings": [{"fact": "x", "source": "y"},],}'
    assert extract_and_parse(text) == {"findings": [{"fact": "x", "source": "y"}]}


def test_quotes_bare_keys_and_converts_single_quotes():
    assert extract_and_parse("{queries: ['a', 'b']}") == {"queries": ["a", "b"]}


def test_keeps_apostrophes_inside_double_quoted_strings():
    assert extract_and_parse('{"fact": "it\'s fine"}') == {"fact": "it's fine"}


def test_removes_line_comments_but_not_urls():
    text = '{"source": "https://example.com/a", // where it came from\n "fact": "x"}'
    assert extract_and_parse(text) == {"source": "https://example.com/a", "fact": "x"}


def test_escapes_raw_newlines_inside_strings():
    assert extract_and_parse('{"fact": "line1\nline2"}') == {"fact": "line1\nline2"}


def test_strips_invalid_escapes():
    assert extract_and_parse('{"path": "C:\\data"}') == {"path": "C:data"}


def test_parses_object_surrounded_by_prose():
    text = 'Here you go: {"isComplete": true, "gaps": [], "additionalQueries": []} thanks'
    assert extract_and_parse(text) == {"isComplete": True, "gaps": [], "additionalQueries": []}


def test_falls_back_to_empty_findings():
    assert extract_and_parse('{"findings": [{"fact": "unterminated') == {"findings": []}


def test_falls_back_to_incomplete_analysis():
    result = extract_and_parse('{"isComplete": tru')
    assert result == {"isComplete": False, "gaps": [PARSE_ERROR_NOTE], "additionalQueries": []}


def test_falls_back_to_skeletal_report():
    result = extract_and_parse('{"title": "报告", "introduction": ')
    assert result["findings"] == []
    assert result["introduction"] == PARSE_ERROR_NOTE


@pytest.mark.parametrize("content", ["", None, 42, "not json at all"])
def test_unusable_input_yields_empty_object(content):
    assert extract_and_parse(content) == {}


def test_sanitize_json_on_empty_text():
    assert sanitize_json("") == "{}"


def test_keeps_finding_with_windows_path_backslash_u():
    text = '{"findings": [{"fact": "saved in C:\\users\\bob", "source": "s"}]}'
    result = extract_and_parse(text)
    assert len(result["findings"]) == 1
    assert result["findings"][0]["fact"].startswith("saved in C:users")
    assert result["findings"][0]["source"] == "s"


def test_keeps_valid_unicode_escape():
    assert extract_and_parse('{"fact": "caf\\u00e9"}') == {"fact": "café"}


def test_replaces_control_characters_with_spaces():
    assert extract_and_parse('{"fact": "a\x01b\x1fc"}') == {"fact": "a b c"}


_NEAR_VALID = (
    '{"findings": [{"fact": "C:\\users\\x \\q", "source": "https://a.b/c"}], '
    '"isComplete": true, "gaps": ["g1",], \'note\': \'it\\\'s\', // tail\n "n": 1}'
)


@pytest.mark.parametrize("cut", range(1, len(_NEAR_VALID) + 1, 7))
def test_truncated_output_never_raises(cut):
    result = extract_and_parse(_NEAR_VALID[:cut])
    assert isinstance(result, (dict, list))


@pytest.mark.parametrize(
    "text",
    [
        '{"fact": "\\u12"}',
        '{"fact": "\\uZZZZ end"}',
        '{"fact": "trailing backslash \\',
        '{"a": [1, 2,, 3]}',
        "{'a': 'unterminated}",
        '{"a": "x\x00\x07y"}',
        '{"a": {"b": [}',
        '{"a": "\\"}',
        "{,}",
        '{"a": // only a comment',
    ],
)
def test_mangled_objects_never_raise(text):
    result = extract_and_parse(text)
    assert isinstance(result, (dict, list))
