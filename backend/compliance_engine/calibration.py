from __future__ import annotations

from dataclasses import dataclass
import math
import re

from compliance_engine.config import AnalysisTuning
from compliance_engine.models import (
    ComplianceMatch,
    Document,
    MissingStructuralElement,
    QualityRating,
    ReadinessLevel,
    StructuralAnalysis,
)


@dataclass(frozen=True)
class StructuralCheck:
    field_name: str
    element: str
    importance: str
    suggested_location: str
    pattern: re.Pattern[str]


STRUCTURAL_CHECKS = (
    StructuralCheck(
        "has_purpose_statement",
        "Purpose and scope statement",
        "high",
        "Opening section, directly after the title",
        re.compile(r"\b(purpose|scope|objective)\b", re.I),
    ),
    StructuralCheck(
        "has_roles_responsibilities",
        "Roles and responsibilities",
        "high",
        "After the purpose and scope section",
        re.compile(r"\b(responsib\w*|accountab\w*|roles?)\b", re.I),
    ),
    StructuralCheck(
        "has_procedures",
        "Step-by-step procedures",
        "high",
        "Main body of the document",
        re.compile(r"\b(procedures?|protocols?|steps?)\b", re.I),
    ),
    StructuralCheck(
        "has_monitoring_plan",
        "Monitoring and verification plan",
        "high",
        "After the procedures section",
        re.compile(r"\b(monitor\w*|verif\w*|inspection)\b", re.I),
    ),
    StructuralCheck(
        "has_record_keeping",
        "Record keeping requirements",
        "medium",
        "After the monitoring section",
        re.compile(r"\b(records?|record[- ]keeping|logs?|retention)\b", re.I),
    ),
    StructuralCheck(
        "has_capa",
        "Corrective and preventive actions",
        "medium",
        "After the monitoring section",
        re.compile(r"\b(corrective actions?|preventive actions?|capa)\b", re.I),
    ),
    StructuralCheck(
        "has_traceability",
        "Document control and traceability",
        "low",
        "Document header or revision history",
        re.compile(r"\b(revision|version|document (?:no|number|control)|traceab\w*|lot code)\b", re.I),
    ),
)

TITLE_LINE_MAX_CHARS = 120


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _covered_fraction(matches: list[ComplianceMatch]) -> float:
    if not matches:
        return 0.0
    return sum(1 for match in matches if match.status == "covered") / len(matches)


def calibrate_content_score(matches: list[ComplianceMatch], tuning: AnalysisTuning) -> int:
    """Mean requirement score with small bounded bonuses, never above the cap."""
    total = len(matches)
    if total == 0:
        return 0

    mean = sum(match.score for match in matches) / total
    covered = sum(1 for match in matches if match.status == "covered")
    missing = sum(1 for match in matches if match.status == "missing")

    calibrated = mean
    for bonus in tuning.content_bonuses:
        if mean < bonus.min_mean or covered / total < bonus.min_covered_share:
            continue
        if bonus.require_no_missing and missing:
            continue
        calibrated = min(mean + bonus.bonus, bonus.ceiling)
        break

    return min(round_half_up(calibrated), tuning.content_score_cap)


def calibrate_audit_score(
    matches: list[ComplianceMatch],
    documents: list[Document],
    tuning: AnalysisTuning,
) -> int:
    all_text = " ".join(document.text.lower() for document in documents)
    score = tuning.audit_base_score
    for terms, points in tuning.audit_term_groups:
        if any(term in all_text for term in terms):
            score += points

    covered_fraction = _covered_fraction(matches)
    for minimum, bonus in tuning.audit_coverage_bonuses:
        if covered_fraction >= minimum:
            score += bonus
            break

    return min(score, tuning.audit_score_cap)


def calibrate_overall_score(content_score: int, audit_score: int, tuning: AnalysisTuning) -> int:
    return round_half_up(content_score * tuning.content_weight + audit_score * tuning.audit_weight)


def _has_title_page(text: str) -> bool:
    for line in text.splitlines():
        stripped = line.strip()
        if stripped:
            return len(stripped) <= TITLE_LINE_MAX_CHARS and not stripped.endswith(".")
    return False


def _structure_flags(text: str) -> dict[str, bool]:
    flags = {"has_title_page": _has_title_page(text)}
    for check in STRUCTURAL_CHECKS:
        flags[check.field_name] = bool(check.pattern.search(text))
    return flags


def _score_flags(flags: dict[str, bool]) -> int:
    return round_half_up(100 * sum(1 for value in flags.values() if value) / len(flags))


def structure_score(documents: list[Document]) -> int:
    """Structure score alone, without the per-element breakdown."""
    return _score_flags(_structure_flags("\n\n".join(document.text for document in documents)))


def analyze_structure(documents: list[Document]) -> StructuralAnalysis:
    flags = _structure_flags("\n\n".join(document.text for document in documents))
    missing: list[MissingStructuralElement] = []
    if not flags["has_title_page"]:
        missing.append(
            MissingStructuralElement(
                element="Title and document identification",
                importance="medium",
                suggested_location="First page of the document",
            )
        )
    for check in STRUCTURAL_CHECKS:
        if not flags[check.field_name]:
            missing.append(
                MissingStructuralElement(
                    element=check.element,
                    importance=check.importance,
                    suggested_location=check.suggested_location,
                )
            )

    score = _score_flags(flags)
    return StructuralAnalysis(
        **flags,
        overall_structure_quality=structure_quality(score),
        missing_structural_elements=missing,
        score=score,
    )


def structure_quality(score: int) -> QualityRating:
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 50:
        return "needs-improvement"
    return "poor"


def audit_rating(score: int) -> QualityRating:
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    return "needs-improvement"


def readiness_level(score: int) -> ReadinessLevel:
    if score >= 90:
        return "ready"
    if score >= 75:
        return "minor-revisions"
    return "major-revisions"
