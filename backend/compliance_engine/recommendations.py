from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from compliance_engine.config import AnalysisTuning
from compliance_engine.json_repair import parse_recommendations_payload
from compliance_engine.llm_client import CompletionClient, request_completion
from compliance_engine.models import ComplianceMatch, DocumentRelevanceIssue, Recommendation
from compliance_engine.observability import sanitize_for_logging
from compliance_engine.outcome import PhaseResult

logger = logging.getLogger("compliance_engine.recommendations")

VALID_PRIORITIES = {"high", "medium", "low"}
VALID_CATEGORIES = {"content", "structure", "audit-readiness"}

MINOR_IMPROVEMENTS = (
    Recommendation(
        priority="low",
        category="audit-readiness",
        recommendation="Add specific examples or case studies",
        specific_guidance="Include real-world examples to demonstrate practical application",
        example_text="Example: 'During the Q3 review, we identified...'",
    ),
    Recommendation(
        priority="low",
        category="content",
        recommendation="Enhance traceability references",
        specific_guidance="Add cross-references between related procedures",
        example_text="Example: 'See Section X.X for related requirements'",
    ),
)


def _location_hint(match: ComplianceMatch) -> str:
    if match.text_anchor:
        return f'Near section containing: "{match.text_anchor[:60]}..."'
    return f"Section covering {match.requirement_id}"


def build_gap_prompt(gaps: list[ComplianceMatch], titles: dict[str, str]) -> str:
    blocks = "\n".join(
        f"{index}. ID: {gap.requirement_id}\n"
        f"   Requirement: {titles.get(gap.requirement_id, gap.requirement_id)}\n"
        f"   Status: {gap.status}\n"
        f"   Score: {gap.score}/100\n"
        f"   Confidence: {gap.confidence * 100:.0f}%\n\n"
        f"   EXISTING EVIDENCE FOUND IN DOCUMENT:\n"
        f'   "{gap.evidence[:400]}"\n\n'
        f'   TEXT ANCHOR (location in document): "{gap.text_anchor}"\n'
        f"   SOURCE FILE: {gap.source_file}\n\n"
        f"   IDENTIFIED GAPS: {', '.join(gap.missing_elements)}\n"
        for index, gap in enumerate(gaps, start=1)
    )
    return (
        "You are a compliance documentation expert. Generate specific recommendations to improve compliance.\n\n"
        f"REQUIREMENTS TO IMPROVE:\n{blocks}\n"
        "Generate 3-5 specific, actionable recommendations. Focus on what to ADD or CLARIFY.\n\n"
        "CRITICAL: For each recommendation:\n"
        "1. Reference the EXACT location using the text anchor provided\n"
        "2. Specify WHETHER to modify existing content or add new section\n"
        "3. Provide specific paragraph/section guidance like \"After paragraph starting with 'X'\" "
        "or \"Modify section containing 'Y'\"\n\n"
        "IMPORTANT: You MUST respond with ONLY valid JSON. No markdown, no code blocks, no extra text.\n\n"
        "Format your response as:\n"
        '{"recommendations":[{"requirementId":"1.01.01","priority":"high","category":"content",'
        '"recommendation":"Brief description","specificGuidance":"What to do","exampleText":"Specific example",'
        '"suggestedLocation":"Reference text anchor and specific paragraph/section to edit",'
        '"textAnchor":"Copy the text anchor from above"}]}\n\n'
        "Respond with JSON only:"
    )


def build_polish_prompt(items: list[ComplianceMatch]) -> str:
    blocks = "\n".join(
        f"{index}. {item.requirement_id}: Score {item.score}/100, Coverage {item.coverage * 100:.0f}%\n\n"
        f"   EXISTING CONTENT:\n"
        f'   "{item.evidence[:300]}"\n\n'
        f'   TEXT ANCHOR: "{item.text_anchor}"\n'
        f"   SOURCE: {item.source_file}"
        for index, item in enumerate(items, start=1)
    )
    return (
        "Generate improvement suggestions for covered requirements that could be enhanced.\n\n"
        f"ITEMS:\n{blocks}\n\n"
        "Provide specific suggestions referencing the text anchor for precise location guidance.\n\n"
        "Respond with JSON only (no markdown):\n"
        '{"recommendations":[{"requirementId":"1.01.01","priority":"medium","category":"content",'
        '"recommendation":"Brief","specificGuidance":"Details","exampleText":"Example",'
        '"suggestedLocation":"Specific location referencing text anchor","textAnchor":"Text anchor from above"}]}'
    )


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def coerce_recommendations(items: list[Any], limit: int) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        priority = str(item.get("priority") or "").strip().lower()
        category = str(item.get("category") or "").strip().lower()
        try:
            recommendation = Recommendation(
                requirement_id=_optional_text(item.get("requirementId")),
                priority=priority if priority in VALID_PRIORITIES else "medium",
                category=category if category in VALID_CATEGORIES else "content",
                recommendation=str(item.get("recommendation") or "").strip(),
                specific_guidance=_optional_text(item.get("specificGuidance")),
                example_text=_optional_text(item.get("exampleText")),
                suggested_location=_optional_text(item.get("suggestedLocation")),
                text_anchor=_optional_text(item.get("textAnchor")),
            )
        except ValidationError:
            continue
        recommendations.append(recommendation)
        if len(recommendations) >= limit:
            break
    return recommendations


def fallback_gap_recommendations(
    gaps: list[ComplianceMatch],
    titles: dict[str, str],
    limit: int,
) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    for gap in gaps[:limit]:
        title = titles.get(gap.requirement_id, gap.requirement_id)
        guidance = (
            f"Address the following gaps: {', '.join(gap.missing_elements)}"
            if gap.missing_elements
            else "Add more specific details, examples, and measurable criteria"
        )
        recommendations.append(
            Recommendation(
                requirement_id=gap.requirement_id,
                priority="high" if gap.score < 50 else "medium",
                category="content",
                recommendation=f"Enhance documentation for: {title}",
                specific_guidance=guidance,
                example_text=(
                    f"Review requirement {gap.requirement_id} and ensure all mandatory elements are documented "
                    "with specific procedures, responsibilities, and frequencies"
                ),
                suggested_location=_location_hint(gap),
                text_anchor=gap.text_anchor,
            )
        )
    return recommendations


def fallback_improvements(
    items: list[ComplianceMatch],
    titles: dict[str, str],
    limit: int,
) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    for item in items[:limit]:
        title = titles.get(item.requirement_id, item.requirement_id)
        if item.coverage < 0.7:
            recommendation = f"Add missing elements for: {title}"
            guidance = (
                f"Current coverage is {item.coverage * 100:.0f}%. "
                f"Add details for: {', '.join(item.missing_elements) or 'procedures, frequencies and owners'}"
            )
            example = "Include specific procedures, frequencies, and responsibilities for each element"
        elif item.score < 85:
            recommendation = f"Enhance specificity for: {title}"
            guidance = "Add measurable criteria, specific timelines, or concrete examples to strengthen documentation"
            example = (
                'Example: Change "regularly review" to "review quarterly during management meetings '
                'with documented action items"'
            )
        else:
            recommendation = f"Add examples or metrics for: {title}"
            guidance = (
                "Documentation is adequate but could be strengthened with real-world examples or measurable KPIs"
            )
            example = (
                'Example: Include specific targets like "achieve 95% training completion rate" '
                "or reference past improvement initiatives"
            )
        recommendations.append(
            Recommendation(
                requirement_id=item.requirement_id,
                priority="medium",
                category="content",
                recommendation=recommendation,
                specific_guidance=guidance,
                example_text=example,
                suggested_location=_location_hint(item),
                text_anchor=item.text_anchor,
            )
        )
    return recommendations


def relevance_recommendations(
    issues: list[DocumentRelevanceIssue],
    sub_module_description: str | None = None,
) -> list[Recommendation]:
    recommendations: list[Recommendation] = []
    for issue in issues:
        if issue.is_relevant:
            continue
        expected = issue.suggested_topic or (sub_module_description or "").strip() or "the topics of this submodule"
        missing = ", ".join(issue.requirements_missing) or "not reported"
        recommendations.append(
            Recommendation(
                priority="high",
                category="content",
                recommendation=(
                    f'Document "{issue.document_name}" is not relevant to this submodule. '
                    f"{issue.recommendation}".strip()
                ),
                specific_guidance=(
                    f"This document addresses: {issue.identified_topic or 'an unrelated topic'}. "
                    f"Expected topics: {expected}. Missing: {missing}"
                ),
            )
        )
    return recommendations


class RecommendationGenerator:
    def __init__(self, client: CompletionClient, tuning: AnalysisTuning) -> None:
        self._client = client
        self._tuning = tuning

    async def generate(
        self,
        matches: list[ComplianceMatch],
        titles: dict[str, str],
    ) -> PhaseResult[list[Recommendation]]:
        """Pick gaps first, then polish candidates, else return canned suggestions."""
        tuning = self._tuning
        gaps = [match for match in matches if match.status != "covered"]
        if gaps:
            top = gaps[: tuning.max_gap_prompt_items]
            return await self._from_model(
                prompt=build_gap_prompt(top, titles),
                max_tokens=tuning.recommendation_max_tokens,
                fallback=lambda: fallback_gap_recommendations(top, titles, tuning.max_fallback_recommendations),
                kind="gaps",
            )

        polish = [match for match in matches if match.score < tuning.polish_score_threshold]
        if polish:
            top = polish[: tuning.max_polish_prompt_items]
            return await self._from_model(
                prompt=build_polish_prompt(top),
                max_tokens=tuning.improvement_max_tokens,
                fallback=lambda: fallback_improvements(top, titles, tuning.max_fallback_improvements),
                kind="polish",
            )

        return PhaseResult.ok([item.model_copy() for item in MINOR_IMPROVEMENTS])

    async def _from_model(self, *, prompt: str, max_tokens: int, fallback, kind: str) -> PhaseResult[list[Recommendation]]:
        try:
            response = await request_completion(self._client, prompt, max_tokens)
        except Exception as exc:
            logger.warning(
                "recommendation_call_failed",
                extra={"event": "recommendation_call_failed", "kind": kind, "error": str(exc)},
            )
            return PhaseResult.fallback(fallback(), f"recommendation_call_failed: {exc}")

        parsed = parse_recommendations_payload(response)
        recommendations = coerce_recommendations(parsed.value or [], self._tuning.max_recommendations)
        if not recommendations:
            reason = parsed.fallback_reason or "no_usable_recommendations"
            logger.warning(
                "recommendation_parse_fallback",
                extra={
                    "event": "recommendation_parse_fallback",
                    "kind": kind,
                    "reason": reason,
                    "response_excerpt": sanitize_for_logging(response[:200]),
                },
            )
            return PhaseResult.fallback(fallback(), reason)

        logger.info(
            "recommendations_generated",
            extra={"event": "recommendations_generated", "kind": kind, "count": len(recommendations)},
        )
        if parsed.is_fallback:
            return PhaseResult.fallback(recommendations, parsed.fallback_reason or "repaired")
        return PhaseResult.ok(recommendations)
