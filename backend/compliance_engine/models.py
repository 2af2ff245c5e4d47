from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


CoverageStatus = Literal["covered", "partial", "missing"]
AssessmentMethod = Literal["heuristic", "llm", "llm_fallback", "insufficient_evidence"]
Priority = Literal["high", "medium", "low"]
RecommendationCategory = Literal["content", "structure", "audit-readiness"]
QualityRating = Literal["excellent", "good", "needs-improvement", "poor"]
ReadinessLevel = Literal["ready", "minor-revisions", "major-revisions", "not-ready"]
ElementState = Literal["yes", "not_found"]


class Requirement(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str
    description: str | None = None
    keywords: tuple[str, ...] = ()

    @property
    def text(self) -> str:
        return f"{self.title} {self.description or ''}"


class Document(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    file_name: str = Field(..., min_length=1, alias="fileName")
    text: str = ""


class MatchQuality(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_specific_terms: bool = False
    has_generic_terms: bool = False
    section_count: int = 0
    total_match_length: int = 0
    contextual_relevance: float = 0.0
    specific_matches: int = 0
    generic_matches: int = 0


class ExtractedFact(BaseModel):
    model_config = ConfigDict(frozen=True)

    requirement_id: str
    requirement_text: str
    topic_mentioned: bool
    details: dict[str, ElementState] = Field(default_factory=dict)
    quotes: tuple[str, ...] = ()
    source_file: str = "N/A"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    match_quality: MatchQuality = Field(default_factory=MatchQuality)


class ComplianceMatch(BaseModel):
    requirement_id: str
    status: CoverageStatus
    score: int = Field(..., ge=0, le=100)
    coverage: float = Field(..., ge=0.0, le=1.0)
    missing_elements: list[str] = Field(default_factory=list)
    evidence: str = ""
    text_anchor: str = ""
    source_file: str = "N/A"
    confidence: float = 0.0
    assessment_method: AssessmentMethod = "heuristic"


class DocumentRelevanceIssue(BaseModel):
    document_name: str
    relevance_score: int = Field(..., ge=0, le=100)
    is_relevant: bool
    reasoning: str = ""
    identified_topic: str = ""
    requirements_addressed: list[str] = Field(default_factory=list)
    requirements_missing: list[str] = Field(default_factory=list)
    suggested_topic: str = ""
    recommendation: str = ""


class DocumentRelevance(BaseModel):
    all_relevant: bool = True
    issues: list[DocumentRelevanceIssue] = Field(default_factory=list)
    should_block_analysis: bool = False
    analysis_blocked: bool = False


class Recommendation(BaseModel):
    requirement_id: str | None = None
    priority: Priority = "medium"
    category: RecommendationCategory = "content"
    recommendation: str = Field(..., min_length=1)
    specific_guidance: str | None = None
    example_text: str | None = None
    suggested_location: str | None = None
    text_anchor: str | None = None


class ContentCoverageItem(BaseModel):
    question_id: str
    status: CoverageStatus
    evidence_snippet: str
    text_anchor: str | None = None
    confidence: float
    source_file: str


class MissingStructuralElement(BaseModel):
    element: str
    importance: str
    suggested_location: str


class StructuralAnalysis(BaseModel):
    has_title_page: bool = False
    has_purpose_statement: bool = False
    has_roles_responsibilities: bool = False
    has_procedures: bool = False
    has_monitoring_plan: bool = False
    has_record_keeping: bool = False
    has_capa: bool = False
    has_traceability: bool = False
    overall_structure_quality: QualityRating = "poor"
    missing_structural_elements: list[MissingStructuralElement] = Field(default_factory=list)
    score: int = 0


class AuditRisk(BaseModel):
    issue: str
    text_anchor: str
    impact: str
    recommendation: str


class AuditReadiness(BaseModel):
    language_professionalism: QualityRating = "poor"
    procedure_implementability: QualityRating = "poor"
    monitoring_adequacy: QualityRating = "poor"
    verification_mechanisms: QualityRating = "poor"
    record_keeping_clarity: QualityRating = "poor"
    overall_audit_readiness: ReadinessLevel = "not-ready"
    audit_risks: list[AuditRisk] = Field(default_factory=list)
    score: int = 0


class CoveredRequirement(BaseModel):
    id: str
    title: str
    evidence: str
    text_anchor: str | None = None
    source: str
    confidence: float


class PartialRequirement(BaseModel):
    id: str
    title: str
    gaps: str
    text_anchor: str | None = None
    source: str
    confidence: float


class MissingRequirementDetail(BaseModel):
    id: str
    title: str
    severity: Priority = "high"
    impact: str


class CoveredBucket(BaseModel):
    count: int = 0
    requirements: list[CoveredRequirement] = Field(default_factory=list)


class PartialBucket(BaseModel):
    count: int = 0
    requirements: list[PartialRequirement] = Field(default_factory=list)


class MissingBucket(BaseModel):
    count: int = 0
    requirements: list[MissingRequirementDetail] = Field(default_factory=list)


class MissingRequirement(BaseModel):
    question_id: str
    description: str
    severity: Priority


class Risk(BaseModel):
    risk_id: str
    description: str
    severity: Priority
    recommendation: str


class LightweightAnalysisResult(BaseModel):
    overall_score: int
    content_score: int
    structure_score: int
    audit_readiness_score: int
    document_relevance: DocumentRelevance
    can_improve: bool
    should_generate_from_scratch: bool
    diagnostics: dict[str, object] = Field(default_factory=dict)


class AnalysisResult(LightweightAnalysisResult):
    can_merge: bool
    content_coverage: list[ContentCoverageItem] = Field(default_factory=list)
    structural_analysis: StructuralAnalysis = Field(default_factory=StructuralAnalysis)
    audit_readiness: AuditReadiness = Field(default_factory=AuditReadiness)
    recommendations: list[Recommendation] = Field(default_factory=list)
    missing_requirements: list[MissingRequirement] = Field(default_factory=list)
    covered: CoveredBucket = Field(default_factory=CoveredBucket)
    partial: PartialBucket = Field(default_factory=PartialBucket)
    missing: MissingBucket = Field(default_factory=MissingBucket)
    risks: list[Risk] = Field(default_factory=list)
    coverage_map: dict[str, CoverageStatus] = Field(default_factory=dict)
