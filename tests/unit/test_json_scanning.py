from llmchat.domain.services.json_scanning import (
    extract_embedded_object,
    find_matching_brace,
    is_incomplete_json,
    scan_brackets,
    strip_code_fence,
    unescape_json_fragment,
)


def test_brackets_inside_strings_are_ignored() -> None:
    scan = scan_brackets('{"a": "}{][", "b": [1, 2]}')

    assert scan.open_braces == 0
    assert scan.open_brackets == 0
    assert not scan.in_string


def test_escaped_quotes_keep_string_open() -> None:
    scan = scan_brackets('{"a": "say \\"hi')

    assert scan.in_string
    assert scan.open_braces == 1


def test_incompleteness_rules() -> None:
    assert is_incomplete_json("")
    assert is_incomplete_json("hello")
    assert is_incomplete_json('{"a": [1, 2}')
    assert is_incomplete_json('{"a": "b')
    assert is_incomplete_json('{"a": 1} trailing')
    assert not is_incomplete_json('{"a": 1}')
    assert not is_incomplete_json("[1, 2]")


def test_matching_brace_skips_string_content() -> None:
    text = 'x {"a": "}", "b": {"c": 1}} y'

    assert find_matching_brace(text, 2) == len(text) - 3
    assert find_matching_brace('{"open": 1', 0) == -1


def test_embedded_object_is_split_from_prose() -> None:
    embedded = extract_embedded_object('Before {"k": "v"} after')

    assert embedded is not None
    assert embedded.value == {"k": "v"}
    assert embedded.text_before == "Before"
    assert embedded.text_after == "after"
    assert extract_embedded_object("no json here") is None
    assert extract_embedded_object("broken {not: json}") is None


def test_code_fence_is_removed() -> None:
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


def test_fragment_unescape_drops_partial_escape() -> None:
    assert unescape_json_fragment("Line\\nbreak") == "Line\nbreak"
    assert unescape_json_fragment('say \\"hi\\"') == 'say "hi"'
    assert unescape_json_fragment("caf\\u00e") == "caf"
