from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
import logging
import time
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from compliance_engine.assessment import ComplianceAssessor
from compliance_engine.calibration import (
    analyze_structure,
    audit_rating,
    calibrate_audit_score,
    calibrate_content_score,
    calibrate_overall_score,
    readiness_level,
    structure_score,
)
from compliance_engine.checklist import normalize_checklist, requirement_titles
from compliance_engine.config import AnalysisTuning
from compliance_engine.extraction import FactExtractor
from compliance_engine.llm_client import CompletionClient
from compliance_engine.models import (
    AnalysisResult,
    AuditReadiness,
    AuditRisk,
    ComplianceMatch,
    ContentCoverageItem,
    CoveredBucket,
    CoveredRequirement,
    Document,
    DocumentRelevance,
    ExtractedFact,
    LightweightAnalysisResult,
    MissingBucket,
    MissingRequirement,
    MissingRequirementDetail,
    PartialBucket,
    PartialRequirement,
    Recommendation,
    Requirement,
    Risk,
    StructuralAnalysis,
)
from compliance_engine.outcome import PhaseResult
from compliance_engine.recommendations import RecommendationGenerator, relevance_recommendations
from compliance_engine.relevance import RelevanceValidator

logger = logging.getLogger("compliance_engine.engine")

BLOCKED_EVIDENCE = "Document not relevant to this submodule"
BLOCKED_IMPACT = "Document not relevant to this submodule - requirements cannot be assessed"
BLOCKED_RISK_GUIDANCE = "Upload relevant documents for this submodule"
MISSING_IMPACT = "Required for compliance"
MAX_AUDIT_RISKS = 3
MAX_RISKS = 4


class AnalysisInputError(ValueError):
    """Raised when the top-level analysis arguments cannot be used at all."""


class AnalysisState(str, Enum):
    IDLE = "idle"
    RELEVANCE_CHECKED = "relevance_checked"
    BLOCKED = "blocked"
    FACTS_EXTRACTED = "facts_extracted"
    ASSESSED = "assessed"
    CALIBRATED = "calibrated"
    RECOMMENDATIONS_GENERATED = "recommendations_generated"
    DONE = "done"


class _CountingClient:
    """Wraps the shared client so each run can report how many LLM calls it made."""

    def __init__(self, client: CompletionClient) -> None:
        self._client = client
        self.calls = 0

    async def wait_for_slot(self) -> None:
        await self._client.wait_for_slot()

    async def complete(self, prompt: str, max_tokens: int) -> str:
        self.calls += 1
        return await self._client.complete(prompt, max_tokens)


class _RunTrace:
    def __init__(self) -> None:
        self.run_id = uuid4().hex
        self.states: list[AnalysisState] = [AnalysisState.IDLE]
        self.fallbacks: list[dict[str, str]] = []
        self.tiers: dict[str, int] = {}
        self.started = time.perf_counter()

    def advance(self, state: AnalysisState) -> None:
        self.states.append(state)
        logger.debug("analysis_state", extra={"event": "analysis_state", "run_id": self.run_id, "state": state.value})

    def record(self, phase: str, outcome: PhaseResult[Any]) -> Any:
        if outcome.fallback_reason:
            self.fallbacks.append({"phase": phase, "reason": outcome.fallback_reason})
        return outcome.value

    def diagnostics(self, llm_calls: int) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "states": [state.value for state in self.states],
            "confidence_tiers": dict(self.tiers),
            "fallbacks": list(self.fallbacks),
            "llm_calls": llm_calls,
            "duration_ms": round((time.perf_counter() - self.started) * 1000, 2),
        }


def coerce_documents(documents: Any) -> list[Document]:
    if documents is None:
        raise AnalysisInputError("At least one document is required.")
    if isinstance(documents, (Document, Mapping)):
        documents = [documents]

    coerced: list[Document] = []
    for index, item in enumerate(documents):
        if isinstance(item, Document):
            coerced.append(item)
            continue
        if not isinstance(item, Mapping):
            raise AnalysisInputError(f"Document at index {index} must be a mapping with fileName and text.")
        try:
            coerced.append(
                Document(
                    file_name=item.get("fileName") or item.get("file_name") or f"Document {index + 1}",
                    text=str(item.get("text") or ""),
                )
            )
        except ValidationError as exc:
            raise AnalysisInputError(f"Document at index {index} is invalid: {exc}") from exc

    if not coerced:
        raise AnalysisInputError("At least one document is required.")
    return coerced


def confidence_tiers(facts: list[ExtractedFact], tuning: AnalysisTuning) -> dict[str, int]:
    tiers = {"high": 0, "medium": 0, "low": 0, "not_found": 0}
    for fact in facts:
        if not fact.topic_mentioned:
            tiers["not_found"] += 1
        elif fact.confidence >= tuning.high_confidence_threshold:
            tiers["high"] += 1
        elif fact.confidence >= tuning.medium_confidence_threshold:
            tiers["medium"] += 1
        else:
            tiers["low"] += 1
    return tiers


def build_content_coverage(matches: list[ComplianceMatch]) -> list[ContentCoverageItem]:
    return [
        ContentCoverageItem(
            question_id=match.requirement_id,
            status=match.status,
            evidence_snippet=match.evidence or "Not found",
            text_anchor=match.text_anchor,
            confidence=match.confidence,
            source_file=match.source_file or "N/A",
        )
        for match in matches
    ]


def build_buckets(
    matches: list[ComplianceMatch],
    titles: dict[str, str],
) -> tuple[CoveredBucket, PartialBucket, MissingBucket]:
    covered = [
        CoveredRequirement(
            id=match.requirement_id,
            title=titles.get(match.requirement_id, match.requirement_id),
            evidence=match.evidence,
            text_anchor=match.text_anchor,
            source=match.source_file,
            confidence=match.confidence,
        )
        for match in matches
        if match.status == "covered"
    ]
    partial = [
        PartialRequirement(
            id=match.requirement_id,
            title=titles.get(match.requirement_id, match.requirement_id),
            gaps=", ".join(match.missing_elements),
            text_anchor=match.text_anchor,
            source=match.source_file,
            confidence=match.confidence,
        )
        for match in matches
        if match.status == "partial"
    ]
    missing = [
        MissingRequirementDetail(
            id=match.requirement_id,
            title=titles.get(match.requirement_id, match.requirement_id),
            severity="high",
            impact=MISSING_IMPACT,
        )
        for match in matches
        if match.status == "missing"
    ]
    return (
        CoveredBucket(count=len(covered), requirements=covered),
        PartialBucket(count=len(partial), requirements=partial),
        MissingBucket(count=len(missing), requirements=missing),
    )


def build_audit_readiness(audit_score: int, recommendations: list[Recommendation]) -> AuditReadiness:
    rating = audit_rating(audit_score)
    return AuditReadiness(
        language_professionalism=rating,
        procedure_implementability=rating,
        monitoring_adequacy=rating,
        verification_mechanisms=rating,
        record_keeping_clarity=rating,
        overall_audit_readiness=readiness_level(audit_score),
        audit_risks=[
            AuditRisk(
                issue=item.recommendation,
                text_anchor=item.text_anchor or "",
                impact=item.specific_guidance or "See recommendation",
                recommendation=item.example_text or "Review and address",
            )
            for item in recommendations[:MAX_AUDIT_RISKS]
        ],
        score=audit_score,
    )


def build_risks(recommendations: list[Recommendation], *, blocked: bool = False) -> list[Risk]:
    selected = recommendations if blocked else recommendations[:MAX_RISKS]
    return [
        Risk(
            risk_id=f"RISK-{index}",
            description=item.recommendation,
            severity="high" if blocked or item.priority == "high" else "medium",
            recommendation=item.specific_guidance or (BLOCKED_RISK_GUIDANCE if blocked else "See recommendation"),
        )
        for index, item in enumerate(selected, start=1)
    ]


def missing_requirements_from(bucket: MissingBucket) -> list[MissingRequirement]:
    return [
        MissingRequirement(question_id=item.id, description=item.title, severity=item.severity)
        for item in bucket.requirements
    ]


def build_blocked_result(
    requirements: list[Requirement],
    relevance: DocumentRelevance,
    diagnostics: dict[str, object],
    sub_module_description: str | None = None,
) -> AnalysisResult:
    recommendations = relevance_recommendations(relevance.issues, sub_module_description)
    missing = MissingBucket(
        count=len(requirements),
        requirements=[
            MissingRequirementDetail(id=requirement.id, title=requirement.title, severity="high", impact=BLOCKED_IMPACT)
            for requirement in requirements
        ],
    )
    return AnalysisResult(
        overall_score=0,
        content_score=0,
        structure_score=0,
        audit_readiness_score=0,
        document_relevance=relevance.model_copy(update={"analysis_blocked": True}),
        can_improve=False,
        can_merge=False,
        should_generate_from_scratch=True,
        content_coverage=[
            ContentCoverageItem(
                question_id=requirement.id,
                status="missing",
                evidence_snippet=BLOCKED_EVIDENCE,
                confidence=0.0,
                source_file="N/A",
            )
            for requirement in requirements
        ],
        structural_analysis=StructuralAnalysis(),
        audit_readiness=AuditReadiness(),
        recommendations=recommendations,
        missing_requirements=missing_requirements_from(missing),
        covered=CoveredBucket(),
        partial=PartialBucket(),
        missing=missing,
        risks=build_risks(recommendations, blocked=True),
        coverage_map={requirement.id: "missing" for requirement in requirements},
        diagnostics=diagnostics,
    )


class ComplianceAnalysisEngine:
    """Runs relevance gating, extraction, assessment, calibration and recommendations.

    The engine keeps no state between calls. The completion client is shared,
    so its rate limiting spans concurrent runs in the same process.
    """

    def __init__(self, client: CompletionClient, tuning: AnalysisTuning | None = None) -> None:
        self._client = client
        self._tuning = tuning or AnalysisTuning()

    async def analyze(
        self,
        checklist: Any,
        documents: Any,
        sub_module_description: str | None = None,
    ) -> AnalysisResult:
        tuning = self._tuning
        requirements, docs = self._prepare(checklist, documents)
        client = _CountingClient(self._client)
        trace = _RunTrace()
        logger.info(
            "analysis_started",
            extra={
                "event": "analysis_started",
                "run_id": trace.run_id,
                "mode": "full",
                "requirements": len(requirements),
                "documents": len(docs),
            },
        )

        relevance = trace.record(
            "relevance",
            await RelevanceValidator(client, tuning).validate(docs, requirements, sub_module_description),
        )
        trace.advance(AnalysisState.RELEVANCE_CHECKED)
        if relevance.should_block_analysis:
            trace.advance(AnalysisState.BLOCKED)
            logger.warning(
                "analysis_blocked",
                extra={
                    "event": "analysis_blocked",
                    "run_id": trace.run_id,
                    "irrelevant_documents": [issue.document_name for issue in relevance.issues if not issue.is_relevant],
                },
            )
            return build_blocked_result(
                requirements,
                relevance,
                trace.diagnostics(client.calls),
                sub_module_description,
            )

        matches = await self._assess(client, trace, requirements, docs)
        content_score, audit_score, overall_score = self._calibrate(matches, docs)
        structure = analyze_structure(docs)
        trace.advance(AnalysisState.CALIBRATED)

        titles = requirement_titles(requirements)
        recommendations = trace.record(
            "recommendations",
            await RecommendationGenerator(client, tuning).generate(matches, titles),
        )
        trace.advance(AnalysisState.RECOMMENDATIONS_GENERATED)

        covered, partial, missing = build_buckets(matches, titles)
        trace.advance(AnalysisState.DONE)
        result = AnalysisResult(
            overall_score=overall_score,
            content_score=content_score,
            structure_score=structure.score,
            audit_readiness_score=audit_score,
            document_relevance=relevance.model_copy(update={"analysis_blocked": False}),
            can_improve=overall_score >= tuning.improve_threshold and relevance.all_relevant,
            can_merge=overall_score >= tuning.merge_threshold and relevance.all_relevant and len(docs) > 1,
            should_generate_from_scratch=overall_score < tuning.improve_threshold,
            content_coverage=build_content_coverage(matches),
            structural_analysis=structure,
            audit_readiness=build_audit_readiness(audit_score, recommendations),
            recommendations=recommendations,
            missing_requirements=missing_requirements_from(missing),
            covered=covered,
            partial=partial,
            missing=missing,
            risks=build_risks(recommendations),
            coverage_map={match.requirement_id: match.status for match in matches},
            diagnostics=trace.diagnostics(client.calls),
        )
        logger.info(
            "analysis_completed",
            extra={
                "event": "analysis_completed",
                "run_id": trace.run_id,
                "overall_score": overall_score,
                "content_score": content_score,
                "audit_score": audit_score,
                "covered": covered.count,
                "partial": partial.count,
                "missing": missing.count,
                "recommendations": len(recommendations),
                "llm_calls": client.calls,
            },
        )
        return result

    async def analyze_lightweight(
        self,
        checklist: Any,
        documents: Any,
        sub_module_description: str | None = None,
    ) -> LightweightAnalysisResult:
        """Scores only; skips recommendations and the per-requirement breakdown."""
        tuning = self._tuning
        requirements, docs = self._prepare(checklist, documents)
        client = _CountingClient(self._client)
        trace = _RunTrace()
        logger.info(
            "analysis_started",
            extra={
                "event": "analysis_started",
                "run_id": trace.run_id,
                "mode": "lightweight",
                "requirements": len(requirements),
                "documents": len(docs),
            },
        )

        relevance = trace.record(
            "relevance",
            await RelevanceValidator(client, tuning).validate(docs, requirements, sub_module_description),
        )
        trace.advance(AnalysisState.RELEVANCE_CHECKED)
        if relevance.should_block_analysis:
            trace.advance(AnalysisState.BLOCKED)
            return LightweightAnalysisResult(
                overall_score=0,
                content_score=0,
                structure_score=0,
                audit_readiness_score=0,
                document_relevance=relevance.model_copy(update={"analysis_blocked": True}),
                can_improve=False,
                should_generate_from_scratch=True,
                diagnostics=trace.diagnostics(client.calls),
            )

        matches = await self._assess(client, trace, requirements, docs)
        content_score, audit_score, overall_score = self._calibrate(matches, docs)
        trace.advance(AnalysisState.CALIBRATED)
        logger.info(
            "analysis_completed",
            extra={
                "event": "analysis_completed",
                "run_id": trace.run_id,
                "mode": "lightweight",
                "overall_score": overall_score,
                "llm_calls": client.calls,
            },
        )
        return LightweightAnalysisResult(
            overall_score=overall_score,
            content_score=content_score,
            structure_score=structure_score(docs),
            audit_readiness_score=audit_score,
            document_relevance=relevance.model_copy(update={"analysis_blocked": False}),
            can_improve=overall_score >= tuning.lightweight_improve_threshold and relevance.all_relevant,
            should_generate_from_scratch=overall_score < tuning.lightweight_improve_threshold,
            diagnostics=trace.diagnostics(client.calls),
        )

    def _prepare(self, checklist: Any, documents: Any) -> tuple[list[Requirement], list[Document]]:
        docs = coerce_documents(documents)
        requirements = normalize_checklist(checklist)
        if not requirements:
            logger.warning("empty_checklist", extra={"event": "empty_checklist"})
        return requirements, docs

    async def _assess(
        self,
        client: CompletionClient,
        trace: _RunTrace,
        requirements: list[Requirement],
        documents: list[Document],
    ) -> list[ComplianceMatch]:
        facts = FactExtractor(self._tuning).extract(requirements, documents)
        trace.tiers = confidence_tiers(facts, self._tuning)
        trace.advance(AnalysisState.FACTS_EXTRACTED)

        matches = trace.record(
            "assessment",
            await ComplianceAssessor(client, self._tuning).assess(facts, requirements),
        )
        trace.advance(AnalysisState.ASSESSED)
        return matches

    def _calibrate(self, matches: list[ComplianceMatch], documents: list[Document]) -> tuple[int, int, int]:
        content_score = calibrate_content_score(matches, self._tuning)
        audit_score = calibrate_audit_score(matches, documents, self._tuning)
        return content_score, audit_score, calibrate_overall_score(content_score, audit_score, self._tuning)
