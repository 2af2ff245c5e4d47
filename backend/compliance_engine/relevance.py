from __future__ import annotations

import logging
from typing import Any

from compliance_engine.config import AnalysisTuning
from compliance_engine.json_repair import extract_first_json_object
from compliance_engine.llm_client import CompletionClient, request_completion
from compliance_engine.models import Document, DocumentRelevance, DocumentRelevanceIssue, Requirement
from compliance_engine.observability import sanitize_for_logging
from compliance_engine.outcome import PhaseResult

logger = logging.getLogger("compliance_engine.relevance")


def build_relevance_prompt(
    documents: list[Document],
    requirements: list[Requirement],
    sub_module_description: str | None,
    tuning: AnalysisTuning,
) -> str:
    document_blocks = "\n\n---\n\n".join(
        f"DOCUMENT {index}: {document.file_name}\n{document.text[: tuning.relevance_excerpt_chars]}"
        for index, document in enumerate(documents, start=1)
    )
    module_context = f"\nMODULE: {sub_module_description}" if sub_module_description else ""
    requirement_lines = "\n".join(
        f"- {requirement.id}: {requirement.title}"
        for requirement in requirements[: tuning.relevance_max_requirements]
    )
    requirement_block = f"\n\nMODULE REQUIREMENTS:\n{requirement_lines}" if requirement_lines else ""

    return (
        f"Assess if documents are relevant to this compliance module.{module_context}{requirement_block}\n\n"
        f"DOCUMENTS:\n{document_blocks}\n\n"
        "TASK: Rate each document's relevance (0-100):\n"
        "- 80-100: Directly addresses this specific module\n"
        "- 60-79: Related/partially relevant\n"
        "- 0-59: Wrong module or unrelated\n\n"
        "OUTPUT JSON (no markdown):\n"
        '{"documents":[{"documentName":"filename","relevanceScore":85,"reasoning":"Brief explanation",'
        '"identifiedTopic":"What this doc covers","requirementsAddressed":["1.01.01"],'
        '"requirementsMissing":["1.01.02"],"suggestedTopic":"Correct module if wrong",'
        '"recommendation":"Use, revise, or replace"}]}'
    )


def _coerce_score(value: object) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, score))


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()]


def parse_relevance_issues(payload: dict[str, Any], tuning: AnalysisTuning) -> list[DocumentRelevanceIssue]:
    entries = payload.get("documents", [])
    if not isinstance(entries, list):
        return []

    issues: list[DocumentRelevanceIssue] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        score = _coerce_score(entry.get("relevanceScore"))
        issues.append(
            DocumentRelevanceIssue(
                document_name=str(entry.get("documentName") or "Unknown document"),
                relevance_score=score,
                is_relevant=score >= tuning.relevance_threshold,
                reasoning=str(entry.get("reasoning") or ""),
                identified_topic=str(entry.get("identifiedTopic") or ""),
                requirements_addressed=_string_list(entry.get("requirementsAddressed")),
                requirements_missing=_string_list(entry.get("requirementsMissing")),
                suggested_topic=str(entry.get("suggestedTopic") or ""),
                recommendation=str(entry.get("recommendation") or ""),
            )
        )
    return issues


def summarize_relevance(
    issues: list[DocumentRelevanceIssue],
    document_count: int,
    tuning: AnalysisTuning,
) -> DocumentRelevance:
    irrelevant_count = sum(1 for issue in issues if issue.relevance_score < tuning.relevance_threshold)
    irrelevant_fraction = irrelevant_count / document_count if document_count else 0.0
    return DocumentRelevance(
        all_relevant=irrelevant_count == 0,
        issues=issues,
        should_block_analysis=irrelevant_fraction > tuning.block_fraction,
    )


class RelevanceValidator:
    def __init__(self, client: CompletionClient, tuning: AnalysisTuning) -> None:
        self._client = client
        self._tuning = tuning

    async def validate(
        self,
        documents: list[Document],
        requirements: list[Requirement],
        sub_module_description: str | None = None,
    ) -> PhaseResult[DocumentRelevance]:
        """Score each document's topical fit; fails open when the model misbehaves."""
        prompt = build_relevance_prompt(documents, requirements, sub_module_description, self._tuning)
        try:
            response = await request_completion(self._client, prompt, self._tuning.relevance_max_tokens)
            payload = extract_first_json_object(response)
        except Exception as exc:
            logger.warning(
                "relevance_check_failed_open",
                extra={"event": "relevance_check_failed_open", "error": str(exc)},
            )
            return PhaseResult.fallback(DocumentRelevance(), f"relevance_check_failed: {exc}")

        issues = parse_relevance_issues(payload, self._tuning)
        relevance = summarize_relevance(issues, len(documents), self._tuning)
        logger.info(
            "relevance_checked",
            extra={
                "event": "relevance_checked",
                "documents": len(documents),
                "scores": {issue.document_name: issue.relevance_score for issue in issues},
                "should_block": relevance.should_block_analysis,
                "reasons": sanitize_for_logging([issue.reasoning for issue in issues]),
            },
        )
        return PhaseResult.ok(relevance)
