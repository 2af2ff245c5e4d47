from __future__ import annotations

import asyncio

from compliance_engine.models import ComplianceMatch, DocumentRelevanceIssue
from compliance_engine.recommendations import (
    RecommendationGenerator,
    build_gap_prompt,
    coerce_recommendations,
    fallback_improvements,
    relevance_recommendations,
)


def _gap(requirement_id: str, score: int, *, anchor: str = "", missing: list[str] | None = None) -> ComplianceMatch:
    return ComplianceMatch(
        requirement_id=requirement_id,
        status="missing" if score == 0 else "partial",
        score=score,
        coverage=0.5 if score else 0.0,
        missing_elements=missing if missing is not None else ["frequency"],
        evidence="Cleaning is carried out by the night shift." if score else "Not found",
        text_anchor=anchor,
        source_file="plan.txt",
        confidence=0.6,
    )


def _covered(requirement_id: str, score: int, coverage: float) -> ComplianceMatch:
    return ComplianceMatch(
        requirement_id=requirement_id,
        status="covered",
        score=score,
        coverage=coverage,
        evidence="Documented in section 2.",
        text_anchor="2. CLEANING Documented in section 2.",
        source_file="plan.txt",
        confidence=0.9,
    )


TITLES = {"1.01": "Cleaning schedule", "1.02": "Chemical storage", "1.03": "Pest control program"}


def test_non_json_reply_for_three_gaps_yields_three_fallbacks(scripted_client, tuning) -> None:
    client = scripted_client(lambda prompt: "Here are some thoughts, no JSON today.")
    gaps = [_gap("1.01", 0), _gap("1.02", 60, anchor="Cleaning is carried out by the night shift."), _gap("1.03", 40)]

    outcome = asyncio.run(RecommendationGenerator(client, tuning).generate(gaps, TITLES))

    assert outcome.fallback_reason == "no_json_boundaries"
    recommendations = outcome.value
    assert len(recommendations) == 3
    assert [item.requirement_id for item in recommendations] == ["1.01", "1.02", "1.03"]
    assert [item.priority for item in recommendations] == ["high", "medium", "high"]
    assert recommendations[0].recommendation == "Enhance documentation for: Cleaning schedule"
    assert recommendations[0].specific_guidance == "Address the following gaps: frequency"
    assert recommendations[0].suggested_location == "Section covering 1.01"
    assert recommendations[1].suggested_location == 'Near section containing: "Cleaning is carried out by the night shift...."'
    assert client.max_tokens == [2000]


def test_gap_recommendations_parse_model_reply(scripted_client, tuning) -> None:
    reply = (
        "```json\n"
        '{"recommendations":['
        '{"requirementId":"1.01","priority":"HIGH","category":"content","recommendation":"Add a weekly cleaning rota",'
        '"specificGuidance":"After paragraph starting with Cleaning","textAnchor":"Cleaning is"},'
        '{"requirementId":"1.02","priority":"urgent","category":"paperwork","recommendation":"Name the chemical store"},'
        '{"requirementId":"1.03","priority":"low","recommendation":""},'
        "]}\n```"
    )
    client = scripted_client(lambda prompt: reply)

    outcome = asyncio.run(RecommendationGenerator(client, tuning).generate([_gap("1.01", 60), _gap("1.02", 0)], TITLES))

    assert outcome.is_fallback is False
    first, second = outcome.value
    assert (first.priority, first.category, first.text_anchor) == ("high", "content", "Cleaning is")
    assert (second.priority, second.category) == ("medium", "content")


def test_gap_prompt_caps_items_and_evidence() -> None:
    gaps = [_gap(f"2.0{index}", 50) for index in range(1, 9)]
    gaps[0] = gaps[0].model_copy(update={"evidence": "e" * 500})

    prompt = build_gap_prompt(gaps[:6], {})

    assert "ID: 2.06" in prompt
    assert "ID: 2.07" not in prompt
    assert "e" * 400 in prompt
    assert "e" * 401 not in prompt
    assert "IDENTIFIED GAPS: frequency" in prompt


def test_only_first_six_gaps_are_sent_to_the_model(scripted_client, tuning) -> None:
    client = scripted_client(lambda prompt: "nothing")
    gaps = [_gap(f"2.0{index}", 50) for index in range(1, 9)]

    outcome = asyncio.run(RecommendationGenerator(client, tuning).generate(gaps, {}))

    assert "ID: 2.06" in client.prompts[0]
    assert "ID: 2.07" not in client.prompts[0]
    assert len(outcome.value) == 5


def test_polish_path_falls_back_by_coverage_and_score_band(scripted_client, tuning) -> None:
    def explode(prompt: str) -> str:
        raise RuntimeError("timeout")

    client = scripted_client(explode)
    matches = [_covered("1.01", 82, 0.6), _covered("1.02", 82, 0.75), _covered("1.03", 87, 0.9), _covered("1.04", 98, 1.0)]

    outcome = asyncio.run(RecommendationGenerator(client, tuning).generate(matches, TITLES))

    assert outcome.fallback_reason == "recommendation_call_failed: timeout"
    assert "Generate improvement suggestions" in client.prompts[0]
    assert [item.recommendation for item in outcome.value] == [
        "Add missing elements for: Cleaning schedule",
        "Enhance specificity for: Chemical storage",
        "Add examples or metrics for: Pest control program",
    ]
    assert {item.priority for item in outcome.value} == {"medium"}


def test_fallback_improvements_keeps_at_most_three() -> None:
    matches = [_covered(f"3.0{index}", 90, 0.9) for index in range(1, 6)]

    assert len(fallback_improvements(matches, {}, 3)) == 3


def test_perfect_coverage_returns_canned_suggestions_without_llm(scripted_client, tuning) -> None:
    client = scripted_client(lambda prompt: "unused")

    outcome = asyncio.run(
        RecommendationGenerator(client, tuning).generate([_covered("1.01", 98, 1.0), _covered("1.02", 98, 1.0)], TITLES)
    )

    assert outcome.is_fallback is False
    assert [item.priority for item in outcome.value] == ["low", "low"]
    assert client.prompts == []


def test_coerce_recommendations_respects_limit() -> None:
    items = [{"recommendation": f"Item {index}"} for index in range(8)] + ["junk"]

    recommendations = coerce_recommendations(items, 5)

    assert [item.recommendation for item in recommendations] == [f"Item {index}" for index in range(5)]


def test_relevance_recommendations_name_irrelevant_documents_only() -> None:
    issues = [
        DocumentRelevanceIssue(
            document_name="payroll.xlsx",
            relevance_score=10,
            is_relevant=False,
            identified_topic="Payroll",
            requirements_missing=["1.01", "1.02"],
            suggested_topic="Human resources",
            recommendation="Upload the pest control plan.",
        ),
        DocumentRelevanceIssue(document_name="pest.txt", relevance_score=90, is_relevant=True),
    ]

    recommendations = relevance_recommendations(issues)

    assert len(recommendations) == 1
    assert recommendations[0].priority == "high"
    assert recommendations[0].recommendation == (
        'Document "payroll.xlsx" is not relevant to this submodule. Upload the pest control plan.'
    )
    assert recommendations[0].specific_guidance == (
        "This document addresses: Payroll. Expected topics: Human resources. Missing: 1.01, 1.02"
    )


def test_relevance_recommendations_name_submodule_when_no_topic_is_suggested() -> None:
    issue = DocumentRelevanceIssue(document_name="menu.pdf", relevance_score=5, is_relevant=False)

    with_description = relevance_recommendations([issue], "Pest control")
    without_description = relevance_recommendations([issue])

    assert "Expected topics: Pest control." in with_description[0].specific_guidance
    assert "Expected topics: the topics of this submodule." in without_description[0].specific_guidance
