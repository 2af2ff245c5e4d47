from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from compliance_engine.config import AnalysisTuning, CoverageTier
from compliance_engine.json_repair import extract_first_json_object
from compliance_engine.llm_client import CompletionClient, request_completion
from compliance_engine.models import ComplianceMatch, CoverageStatus, ExtractedFact, Requirement
from compliance_engine.outcome import PhaseResult

logger = logging.getLogger("compliance_engine.assessment")

LLM_STATUS_SCORES: dict[CoverageStatus, int] = {"covered": 100, "partial": 50, "missing": 0}
LLM_STATUS_COVERAGE: dict[CoverageStatus, float] = {"covered": 0.85, "partial": 0.5, "missing": 0.2}
INCONCLUSIVE_ELEMENTS = ["Validation inconclusive"]
INSUFFICIENT_ELEMENTS = ["Insufficient evidence found"]
PARTIAL_DEFAULT_ELEMENTS = ["Additional details recommended"]


@dataclass(frozen=True)
class EvidenceStrength:
    confidence: float
    coverage: float
    specific_matches: int
    total_length: int


def tier_applies(tier: CoverageTier, evidence: EvidenceStrength) -> bool:
    confident = evidence.confidence >= tier.min_confidence
    covered = evidence.coverage >= tier.min_coverage
    matched = evidence.specific_matches >= tier.min_specific_matches
    long_enough = evidence.total_length >= tier.min_total_length
    if tier.mode == "matches_or_length":
        return confident and covered and (matched or long_enough)
    if tier.mode == "coverage_or_matches":
        return confident and (covered or matched)
    if tier.mode == "confidence_or_coverage":
        return confident or covered
    return confident and covered and matched and long_enough


def weighted_coverage(fact: ExtractedFact, tuning: AnalysisTuning) -> float:
    quality = fact.match_quality
    return min(
        1.0,
        (quality.specific_matches / tuning.coverage_specific_saturation) * tuning.coverage_specific_weight
        + (min(quality.total_match_length, tuning.coverage_length_saturation) / tuning.coverage_length_saturation)
        * tuning.coverage_length_weight
        + (min(quality.section_count, tuning.coverage_section_saturation) / tuning.coverage_section_saturation)
        * tuning.coverage_section_weight,
    )


def element_coverage(fact: ExtractedFact) -> float:
    if not fact.details:
        return 0.0
    return sum(1 for state in fact.details.values() if state == "yes") / len(fact.details)


def _evidence_fields(fact: ExtractedFact, tuning: AnalysisTuning) -> dict[str, Any]:
    return {
        "evidence": "; ".join(fact.quotes[:2]),
        "text_anchor": fact.quotes[0][: tuning.text_anchor_chars] if fact.quotes else "",
        "source_file": fact.source_file,
        "confidence": fact.confidence,
    }


def assess_high_confidence(fact: ExtractedFact, tuning: AnalysisTuning) -> ComplianceMatch:
    coverage = max(element_coverage(fact), weighted_coverage(fact, tuning))
    strength = EvidenceStrength(
        confidence=fact.confidence,
        coverage=coverage,
        specific_matches=fact.match_quality.specific_matches,
        total_length=fact.match_quality.total_match_length,
    )
    tiers = tuning.coverage_tiers
    tier = next((candidate for candidate in tiers if tier_applies(candidate, strength)), tiers[-1])

    missing = [element for element, state in fact.details.items() if state == "not_found"]
    if not missing and tier.status == "partial":
        missing = list(PARTIAL_DEFAULT_ELEMENTS)

    logger.debug(
        "high_confidence_assessed",
        extra={
            "event": "high_confidence_assessed",
            "requirement_id": fact.requirement_id,
            "tier": tier.label,
            "coverage": round(coverage, 3),
            "specific_matches": strength.specific_matches,
            "total_length": strength.total_length,
        },
    )
    return ComplianceMatch(
        requirement_id=fact.requirement_id,
        status=tier.status,
        score=tier.score,
        coverage=coverage,
        missing_elements=missing,
        assessment_method="heuristic",
        **_evidence_fields(fact, tuning),
    )


def insufficient_evidence_match(fact: ExtractedFact, tuning: AnalysisTuning) -> ComplianceMatch:
    fields = _evidence_fields(fact, tuning)
    fields["evidence"] = fact.quotes[0] if fact.quotes else "Not found"
    return ComplianceMatch(
        requirement_id=fact.requirement_id,
        status="missing",
        score=0,
        coverage=0.2 if fact.topic_mentioned else 0.0,
        missing_elements=list(INSUFFICIENT_ELEMENTS),
        assessment_method="insufficient_evidence",
        **fields,
    )


def inconclusive_match(fact: ExtractedFact, tuning: AnalysisTuning) -> ComplianceMatch:
    return ComplianceMatch(
        requirement_id=fact.requirement_id,
        status="partial",
        score=50,
        coverage=0.5,
        missing_elements=list(INCONCLUSIVE_ELEMENTS),
        assessment_method="llm_fallback",
        **_evidence_fields(fact, tuning),
    )


def build_validation_prompt(batch: list[ExtractedFact]) -> str:
    items = "\n".join(
        f"{index}. Requirement {fact.requirement_id}: {fact.requirement_text}\n"
        f"   Evidence found: {' | '.join(fact.quotes)}\n"
        f"   Confidence: {fact.confidence * 100:.0f}%\n"
        for index, fact in enumerate(batch, start=1)
    )
    return (
        "You are a compliance analyst. Determine if these requirements are adequately covered in the document.\n\n"
        f"REQUIREMENTS TO VALIDATE:\n{items}\n"
        "TASK: For each requirement, determine:\n"
        "- Is it COVERED (fully addressed with specific details)?\n"
        "- Is it PARTIAL (mentioned but lacks specifics)?\n"
        "- Is it MISSING (not adequately addressed)?\n\n"
        "Return JSON ONLY (no markdown):\n"
        '{"validations":[{"requirementId":"1.01.01","status":"covered","reasoning":"Brief reason",'
        '"missingElements":[]}]}'
    )


def _normalize_status(value: object) -> CoverageStatus:
    status = str(value or "").strip().lower()
    if status == "covered":
        return "covered"
    if status == "partial":
        return "partial"
    return "missing"


def apply_validations(
    batch: list[ExtractedFact],
    payload: dict[str, Any],
    tuning: AnalysisTuning,
) -> PhaseResult[list[ComplianceMatch]]:
    validations = payload.get("validations")
    if not isinstance(validations, list):
        return PhaseResult.fallback(
            [inconclusive_match(fact, tuning) for fact in batch],
            "validation_payload_missing_validations",
        )

    by_id = {fact.requirement_id: fact for fact in batch}
    resolved: dict[str, ComplianceMatch] = {}
    for entry in validations:
        if not isinstance(entry, dict):
            continue
        requirement_id = str(entry.get("requirementId") or "").strip()
        fact = by_id.get(requirement_id)
        if fact is None or requirement_id in resolved:
            continue
        status = _normalize_status(entry.get("status"))
        missing = entry.get("missingElements")
        resolved[requirement_id] = ComplianceMatch(
            requirement_id=requirement_id,
            status=status,
            score=LLM_STATUS_SCORES[status],
            coverage=LLM_STATUS_COVERAGE[status],
            missing_elements=[str(item) for item in missing] if isinstance(missing, list) else [],
            assessment_method="llm",
            **_evidence_fields(fact, tuning),
        )

    omitted = [fact for fact in batch if fact.requirement_id not in resolved]
    matches = [resolved.get(fact.requirement_id) or inconclusive_match(fact, tuning) for fact in batch]
    if omitted:
        return PhaseResult.fallback(
            matches,
            f"validation_omitted_items: {', '.join(fact.requirement_id for fact in omitted)}",
        )
    return PhaseResult.ok(matches)


class ComplianceAssessor:
    def __init__(self, client: CompletionClient, tuning: AnalysisTuning) -> None:
        self._client = client
        self._tuning = tuning

    async def validate_batch(self, batch: list[ExtractedFact]) -> PhaseResult[list[ComplianceMatch]]:
        """Ask the model for a covered/partial/missing verdict on up to one batch of findings."""
        try:
            response = await request_completion(
                self._client,
                build_validation_prompt(batch),
                self._tuning.validation_max_tokens,
            )
            payload = extract_first_json_object(response)
        except Exception as exc:
            logger.warning(
                "validation_batch_failed",
                extra={
                    "event": "validation_batch_failed",
                    "requirement_ids": [fact.requirement_id for fact in batch],
                    "error": str(exc),
                },
            )
            return PhaseResult.fallback(
                [inconclusive_match(fact, self._tuning) for fact in batch],
                f"validation_batch_failed: {exc}",
            )
        return apply_validations(batch, payload, self._tuning)

    async def assess(
        self,
        facts: list[ExtractedFact],
        requirements: list[Requirement],
    ) -> PhaseResult[list[ComplianceMatch]]:
        tuning = self._tuning
        by_id = {fact.requirement_id: fact for fact in facts}
        ordered = [
            by_id.get(requirement.id)
            or ExtractedFact(requirement_id=requirement.id, requirement_text=requirement.title, topic_mentioned=False)
            for requirement in requirements
        ]

        high: list[ExtractedFact] = []
        medium: list[ExtractedFact] = []
        low: list[ExtractedFact] = []
        for fact in ordered:
            if not fact.topic_mentioned:
                low.append(fact)
            elif fact.confidence >= tuning.high_confidence_threshold:
                high.append(fact)
            elif fact.confidence >= tuning.medium_confidence_threshold:
                medium.append(fact)
            else:
                low.append(fact)

        logger.info(
            "confidence_distribution",
            extra={
                "event": "confidence_distribution",
                "high": len(high),
                "medium": len(medium),
                "low_or_not_found": len(low),
            },
        )

        results = [assess_high_confidence(fact, tuning) for fact in high]
        fallback_reasons: list[str] = []
        size = tuning.validation_batch_size
        for start in range(0, len(medium), size):
            outcome = await self.validate_batch(medium[start : start + size])
            results.extend(outcome.value)
            if outcome.fallback_reason:
                fallback_reasons.append(outcome.fallback_reason)
        results.extend(insufficient_evidence_match(fact, tuning) for fact in low)

        results.sort(key=lambda match: match.requirement_id)
        logger.info(
            "assessment_completed",
            extra={
                "event": "assessment_completed",
                "covered": sum(1 for match in results if match.status == "covered"),
                "partial": sum(1 for match in results if match.status == "partial"),
                "missing": sum(1 for match in results if match.status == "missing"),
            },
        )
        if fallback_reasons:
            return PhaseResult.fallback(results, "; ".join(fallback_reasons))
        return PhaseResult.ok(results)
