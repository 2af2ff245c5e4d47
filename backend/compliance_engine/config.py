from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# How a coverage tier combines its minimums:
#   all                     every minimum holds
#   matches_or_length       confidence and coverage hold, plus specific matches or evidence length
#   coverage_or_matches     confidence holds, plus coverage or specific matches
#   confidence_or_coverage  confidence or coverage holds
TierMode = Literal["all", "matches_or_length", "coverage_or_matches", "confidence_or_coverage"]


class CoverageTier(BaseModel):
    label: str
    status: Literal["covered", "partial"]
    score: int = Field(..., ge=0, le=100)
    min_confidence: float = 0.0
    min_coverage: float = 0.0
    min_specific_matches: int = 0
    min_total_length: int = 0
    mode: TierMode = "all"


class ContentBonus(BaseModel):
    min_mean: float
    min_covered_share: float = 0.0
    require_no_missing: bool = False
    bonus: float
    ceiling: float


DEFAULT_COVERAGE_TIERS = (
    CoverageTier(
        label="covered-excellent",
        status="covered",
        score=98,
        min_confidence=0.95,
        min_coverage=0.8,
        min_specific_matches=5,
        min_total_length=800,
    ),
    CoverageTier(
        label="covered-good",
        status="covered",
        score=92,
        min_confidence=0.90,
        min_coverage=0.7,
        min_specific_matches=3,
        min_total_length=500,
    ),
    CoverageTier(
        label="covered-adequate",
        status="covered",
        score=87,
        min_confidence=0.85,
        min_coverage=0.6,
        min_specific_matches=2,
        min_total_length=300,
    ),
    CoverageTier(
        label="covered-basic",
        status="covered",
        score=82,
        min_confidence=0.70,
        min_coverage=0.5,
        min_specific_matches=1,
        min_total_length=200,
        mode="matches_or_length",
    ),
    CoverageTier(
        label="partial-strong",
        status="partial",
        score=75,
        min_confidence=0.70,
        min_coverage=0.4,
        min_specific_matches=1,
        mode="coverage_or_matches",
    ),
    CoverageTier(
        label="partial-weak",
        status="partial",
        score=60,
        min_confidence=0.50,
        min_coverage=0.3,
        mode="confidence_or_coverage",
    ),
    CoverageTier(label="partial-minimal", status="partial", score=40),
)

DEFAULT_CONTENT_BONUSES = (
    ContentBonus(min_mean=95, min_covered_share=1.0, bonus=3, ceiling=95),
    ContentBonus(min_mean=85, require_no_missing=True, bonus=2, ceiling=92),
    ContentBonus(min_mean=85, min_covered_share=0.85, bonus=2, ceiling=90),
)

DEFAULT_AUDIT_TERM_GROUPS: tuple[tuple[tuple[str, ...], int], ...] = (
    (("procedure", "protocol"), 5),
    (("monitoring", "verification"), 5),
    (("record", "documentation"), 5),
    (("responsibility", "responsible"), 4),
    (("frequency", "schedule"), 4),
    (("criteria", "specification"), 3),
    (("training", "competence"), 3),
    (("corrective action", "capa"), 3),
)


class AnalysisTuning(BaseModel):
    # Relevance gate
    relevance_threshold: int = Field(default=60, ge=0, le=100)
    block_fraction: float = Field(default=0.5, ge=0.0, le=1.0)
    relevance_excerpt_chars: int = 1200
    relevance_max_requirements: int = 40
    relevance_max_tokens: int = 1200

    # Fact extraction
    min_segment_chars: int = 50
    segment_score_threshold: int = 2
    max_segments: int = 5
    dedupe_prefix_chars: int = 100
    fallback_window_lines: int = 5
    fallback_window_min_chars: int = 80
    max_fallback_windows: int = 3
    max_phrase_terms: int = 3
    max_quotes: int = 3
    quote_chars: int = 200
    confidence_base: float = 0.4
    confidence_ceiling: float = 0.98
    # (minimum count or length, confidence bonus), checked in order
    specific_match_tiers: tuple[tuple[int, float], ...] = ((3, 0.35), (2, 0.28), (1, 0.20))
    generic_match_tiers: tuple[tuple[int, float], ...] = ((5, 0.15), (3, 0.12), (2, 0.08))
    evidence_length_tiers: tuple[tuple[int, float], ...] = ((800, 0.15), (400, 0.12), (200, 0.08))
    # Contextual relevance by what the kept sections matched
    context_specific_score: float = 0.85
    context_generic_score: float = 0.6
    context_generic_min_matches: int = 2
    context_default_score: float = 0.4
    context_weight: float = 0.15
    element_weight: float = 0.15

    # Compliance assessment
    high_confidence_threshold: float = 0.70
    medium_confidence_threshold: float = 0.45
    validation_batch_size: int = Field(default=5, ge=1)
    validation_max_tokens: int = 1500
    text_anchor_chars: int = 80
    # Weighted coverage: share of each signal up to its saturation point
    coverage_specific_weight: float = 0.5
    coverage_specific_saturation: int = 5
    coverage_length_weight: float = 0.3
    coverage_length_saturation: int = 1000
    coverage_section_weight: float = 0.2
    coverage_section_saturation: int = 5
    # Checked in order; the first tier that applies decides status and score
    coverage_tiers: tuple[CoverageTier, ...] = DEFAULT_COVERAGE_TIERS

    # Score calibration
    content_score_cap: int = 95
    # Checked in order; only the first bonus that applies is added
    content_bonuses: tuple[ContentBonus, ...] = DEFAULT_CONTENT_BONUSES
    audit_base_score: int = 70
    audit_score_cap: int = 95
    audit_term_groups: tuple[tuple[tuple[str, ...], int], ...] = DEFAULT_AUDIT_TERM_GROUPS
    # (minimum covered share, bonus), checked in order
    audit_coverage_bonuses: tuple[tuple[float, int], ...] = ((0.95, 5), (0.85, 3), (0.75, 2))
    content_weight: float = 0.6
    audit_weight: float = 0.4

    # Recommendations
    max_gap_prompt_items: int = 6
    max_polish_prompt_items: int = 5
    max_fallback_recommendations: int = 5
    max_fallback_improvements: int = 3
    max_recommendations: int = 5
    polish_score_threshold: int = 95
    recommendation_max_tokens: int = 2000
    improvement_max_tokens: int = 1500

    # Result flags
    improve_threshold: int = 35
    lightweight_improve_threshold: int = 30
    merge_threshold: int = 10


class Settings(BaseSettings):
    app_name: str = "Compliance Analysis Engine"
    app_env: str = "development"
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"
    cors_origins: str = "http://localhost:3000"

    aws_region: str = "us-east-1"
    # Some regions require an inference profile ID (e.g. `us.anthropic...`) instead of the foundation ID.
    bedrock_model_id: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    llm_temperature: float = 0.0
    llm_min_interval_ms: int = 600
    llm_max_retries: int = 3
    llm_backoff_base_seconds: float = 1.0

    analysis: AnalysisTuning = Field(default_factory=AnalysisTuning)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
