import pytest

from charmsmith.pipeline.json_extract import JSONExtractionError, parse_json_from_content

PAYLOAD = '{"productName": "Loyal Friend", "story": "A dog.", "prompt": "Convert this image of a dog"}'
EXPECTED = {"productName": "Loyal Friend", "story": "A dog.", "prompt": "Convert this image of a dog"}


def test_bare_object():
    assert parse_json_from_content(PAYLOAD) == EXPECTED


def test_bare_object_with_whitespace():
    assert parse_json_from_content(f"\n  {PAYLOAD}  \n") == EXPECTED


def test_fenced_with_language_tag():
    assert parse_json_from_content(f"```json\n{PAYLOAD}\n```") == EXPECTED


def test_fenced_without_language_tag():
    assert parse_json_from_content(f"```\n{PAYLOAD}\n```") == EXPECTED


def test_embedded_in_prose():
    content = f"Sure! Here is the JSON you asked for: {PAYLOAD} Let me know if you need more."
    assert parse_json_from_content(content) == EXPECTED


def test_all_forms_agree():
    forms = [
        PAYLOAD,
        f"```json\n{PAYLOAD}\n```",
        f"Here you go:\n{PAYLOAD}\nThanks!",
    ]
    results = [parse_json_from_content(form) for form in forms]
    assert results[0] == results[1] == results[2]


def test_array_extraction():
    assert parse_json_from_content('Values: [1, 2, 3] done') == [1, 2, 3]


def test_unparseable_raises():
    with pytest.raises(JSONExtractionError):
        parse_json_from_content("no json here at all")


def test_broken_object_raises():
    with pytest.raises(JSONExtractionError):
        parse_json_from_content('{"productName": "unterminated')


def test_non_string_passthrough():
    assert parse_json_from_content({"a": 1}) == {"a": 1}
