import pytest

from compliance_engine.json_repair import (
    JsonExtractionError,
    clean_json_candidate,
    extract_first_json_object,
    parse_recommendations_payload,
)


def test_extract_first_json_object_spans_outer_braces() -> None:
    payload = extract_first_json_object('Sure! {"validations": [{"requirementId": "1.01"}]} Hope that helps.')

    assert payload == {"validations": [{"requirementId": "1.01"}]}


@pytest.mark.parametrize("raw", ["no json here", '{"broken": }', "[1, 2]", ""])
def test_extract_first_json_object_rejects_unusable_replies(raw: str) -> None:
    with pytest.raises(JsonExtractionError):
        extract_first_json_object(raw)


def test_clean_json_candidate_strips_fences_and_trailing_commas() -> None:
    raw = '```json\n{\n\t"recommendations": [\n  {"recommendation": "Add owner",},\n],\n}\n```'

    assert clean_json_candidate(raw) == '{ "recommendations": [ {"recommendation": "Add owner"}]}'


def test_parse_recommendations_payload_accepts_fenced_reply() -> None:
    outcome = parse_recommendations_payload('```json\n{"recommendations": [{"recommendation": "Add owner"},]}\n```')

    assert outcome.is_fallback is False
    assert outcome.value == [{"recommendation": "Add owner"}]


def test_parse_recommendations_payload_repairs_from_fragment() -> None:
    outcome = parse_recommendations_payload(
        '{"summary": "two items" "recommendations": [{"recommendation": "Add owner"}]}'
    )

    assert outcome.fallback_reason == "repaired_fragment"
    assert outcome.value == [{"recommendation": "Add owner"}]


def test_parse_recommendations_payload_reports_failure_reasons() -> None:
    assert parse_recommendations_payload("No structured output today.").fallback_reason == "no_json_boundaries"
    assert parse_recommendations_payload('{"summary": oops}').fallback_reason == "json_parse_failed"
    assert parse_recommendations_payload('{"items": []}').fallback_reason == "invalid_structure"
    assert parse_recommendations_payload('{"items": []}').value is None
