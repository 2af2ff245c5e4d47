from __future__ import annotations

import asyncio

import pytest

from compliance_engine.assessment import (
    ComplianceAssessor,
    apply_validations,
    assess_high_confidence,
    build_validation_prompt,
    weighted_coverage,
)
from compliance_engine.config import CoverageTier
from compliance_engine.extraction import FactExtractor
from compliance_engine.models import ExtractedFact, MatchQuality, Requirement


def _fact(
    requirement_id: str,
    confidence: float,
    *,
    specific: int = 0,
    length: int = 0,
    sections: int = 1,
    details: dict[str, str] | None = None,
) -> ExtractedFact:
    return ExtractedFact(
        requirement_id=requirement_id,
        requirement_text=f"Requirement {requirement_id}",
        topic_mentioned=True,
        details=details or {},
        quotes=(f"Evidence for {requirement_id} found in the sanitation procedure.",),
        source_file="plan.txt",
        confidence=confidence,
        match_quality=MatchQuality(
            has_specific_terms=specific > 0,
            section_count=sections,
            total_match_length=length,
            specific_matches=specific,
        ),
    )


def _requirements(facts: list[ExtractedFact]) -> list[Requirement]:
    return [Requirement(id=fact.requirement_id, title=fact.requirement_text) for fact in facts]


def test_weighted_coverage_blends_matches_length_and_sections(tuning) -> None:
    fact = _fact("1.01", 0.9, specific=3, length=600, sections=2)

    assert weighted_coverage(fact, tuning) == pytest.approx(0.56)


def test_high_confidence_tier_uses_element_coverage(tuning) -> None:
    fact = _fact(
        "1.01",
        0.92,
        specific=3,
        length=600,
        sections=2,
        details={"procedure": "yes", "monitoring": "yes", "frequency": "not_found"},
    )

    match = assess_high_confidence(fact, tuning)

    assert match.status == "covered"
    assert match.score == 87
    assert match.missing_elements == ["frequency"]
    assert match.assessment_method == "heuristic"
    assert match.text_anchor == fact.quotes[0][:80]


def test_high_confidence_weak_evidence_is_partial_with_default_gap(tuning) -> None:
    match = assess_high_confidence(_fact("1.02", 0.72, specific=0, length=150), tuning)

    assert match.status == "partial"
    assert match.score == 60
    assert match.missing_elements == ["Additional details recommended"]


def test_basic_covered_tier_accepts_long_evidence_without_specific_matches(tuning) -> None:
    fact = _fact("1.03", 0.75, specific=0, length=250, details={"procedure": "yes", "monitoring": "yes"})

    match = assess_high_confidence(fact, tuning)

    assert match.status == "covered"
    assert match.score == 82
    assert match.missing_elements == []


def test_coverage_tiers_come_from_tuning(tuning) -> None:
    strict = tuning.model_copy(
        update={
            "coverage_tiers": (
                CoverageTier(label="strict", status="covered", score=90, min_confidence=0.99),
                CoverageTier(label="fallback", status="partial", score=45),
            )
        }
    )
    fact = _fact("1.04", 0.95, specific=5, length=900, sections=5)

    assert assess_high_confidence(fact, tuning).score == 98
    match = assess_high_confidence(fact, strict)
    assert (match.status, match.score) == ("partial", 45)


def test_well_documented_requirement_is_covered(tuning, pest_requirement, pest_document) -> None:
    fact = FactExtractor(tuning).extract([pest_requirement], [pest_document])[0]

    match = assess_high_confidence(fact, tuning)

    assert match.status == "covered"
    assert match.score in {92, 98}


def test_unmatched_requirement_is_missing_without_llm_call(
    scripted_client, tuning, capa_requirement, pest_document
) -> None:
    client = scripted_client(lambda prompt: "{}")
    facts = FactExtractor(tuning).extract([capa_requirement], [pest_document])

    outcome = asyncio.run(ComplianceAssessor(client, tuning).assess(facts, [capa_requirement]))

    match = outcome.value[0]
    assert match.status == "missing"
    assert match.score == 0
    assert match.coverage == 0.0
    assert match.missing_elements == ["Insufficient evidence found"]
    assert match.assessment_method == "insufficient_evidence"
    assert client.prompts == []
    assert outcome.is_fallback is False


def test_medium_batch_falls_back_when_reply_is_garbage(scripted_client, tuning) -> None:
    client = scripted_client(lambda prompt: "I could not decide, sorry.")
    facts = [_fact(f"2.0{index}", 0.55) for index in range(1, 6)]

    outcome = asyncio.run(ComplianceAssessor(client, tuning).assess(facts, _requirements(facts)))

    assert len(client.prompts) == 1
    assert outcome.is_fallback is True
    assert outcome.fallback_reason.startswith("validation_batch_failed")
    for match in outcome.value:
        assert match.status == "partial"
        assert match.score == 50
        assert match.coverage == 0.5
        assert match.missing_elements == ["Validation inconclusive"]
        assert match.assessment_method == "llm_fallback"


def test_medium_batch_falls_back_when_call_raises(scripted_client, tuning) -> None:
    def explode(prompt: str) -> str:
        raise RuntimeError("bedrock unavailable")

    facts = [_fact(f"2.0{index}", 0.6) for index in range(1, 6)]

    outcome = asyncio.run(ComplianceAssessor(scripted_client(explode), tuning).assess(facts, _requirements(facts)))

    assert [match.score for match in outcome.value] == [50] * 5
    assert "bedrock unavailable" in outcome.fallback_reason


def test_medium_facts_are_validated_in_batches_of_five(scripted_client, tuning) -> None:
    def reply(prompt: str) -> str:
        ids = [line.split("Requirement ")[1].split(":")[0] for line in prompt.splitlines() if "Requirement " in line]
        validations = ",".join(f'{{"requirementId":"{item}","status":"covered","missingElements":[]}}' for item in ids)
        return f'Result: {{"validations":[{validations}]}}'

    client = scripted_client(reply)
    facts = [_fact(f"3.0{index}", 0.5) for index in range(1, 8)]

    outcome = asyncio.run(ComplianceAssessor(client, tuning).assess(facts, _requirements(facts)))

    assert len(client.prompts) == 2
    assert client.max_tokens == [1500, 1500]
    assert outcome.is_fallback is False
    assert {match.status for match in outcome.value} == {"covered"}
    assert {match.score for match in outcome.value} == {100}
    assert {match.coverage for match in outcome.value} == {0.85}
    assert {match.assessment_method for match in outcome.value} == {"llm"}


def test_apply_validations_maps_statuses_and_fills_omitted_items(tuning) -> None:
    batch = [_fact("4.01", 0.5), _fact("4.02", 0.5), _fact("4.03", 0.5)]
    payload = {
        "validations": [
            {"requirementId": "4.01", "status": "Partial", "missingElements": ["owner"]},
            {"requirementId": "4.02", "status": "unsure"},
            {"requirementId": "9.99", "status": "covered"},
        ]
    }

    outcome = apply_validations(batch, payload, tuning)

    first, second, third = outcome.value
    assert (first.status, first.score, first.coverage, first.missing_elements) == ("partial", 50, 0.5, ["owner"])
    assert (second.status, second.score, second.coverage) == ("missing", 0, 0.2)
    assert third.missing_elements == ["Validation inconclusive"]
    assert outcome.fallback_reason == "validation_omitted_items: 4.03"


def test_assessor_sorts_results_and_covers_requirements_without_facts(scripted_client, tuning) -> None:
    client = scripted_client(lambda prompt: "{}")
    facts = [_fact("5.02", 0.95, specific=5, length=900, sections=5)]
    requirements = [Requirement(id="5.02", title="Second"), Requirement(id="5.01", title="First")]

    outcome = asyncio.run(ComplianceAssessor(client, tuning).assess(facts, requirements))

    assert [match.requirement_id for match in outcome.value] == ["5.01", "5.02"]
    assert outcome.value[0].status == "missing"
    assert outcome.value[1].score == 98


def test_validation_prompt_lists_evidence_and_confidence() -> None:
    prompt = build_validation_prompt([_fact("6.01", 0.5)])

    assert "Requirement 6.01: Requirement 6.01" in prompt
    assert "Evidence found: Evidence for 6.01" in prompt
    assert "Confidence: 50%" in prompt
