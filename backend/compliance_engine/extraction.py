from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re

from compliance_engine.config import AnalysisTuning
from compliance_engine.models import Document, ElementState, ExtractedFact, MatchQuality, Requirement

logger = logging.getLogger("compliance_engine.extraction")

GENERIC_COMPLIANCE_TERMS = (
    "policy",
    "procedure",
    "training",
    "monitoring",
    "verification",
    "documentation",
    "record",
    "assessment",
    "control",
    "testing",
    "inspection",
    "audit",
    "review",
    "validation",
    "criteria",
    "frequency",
    "responsibility",
    "implementation",
)

QUOTED_PATTERN = re.compile(r'"([^"]+)"')
PHRASE_PATTERN = re.compile(r"\b[a-z]+\s+[a-z]+\s+[a-z]+(?:\s+[a-z]+)?\b", flags=re.IGNORECASE)
PHRASE_STOPWORDS = re.compile(
    r"\b(have|been|used|were|from|with|this|that|should|would|could|there|where)\b",
    flags=re.IGNORECASE,
)
NON_WORD_PATTERN = re.compile(r"[^\w\s]")
SECTION_HEADER_PATTERN = re.compile(r"^\d+\.\s+[A-Z][A-Z\s&/]+$", flags=re.MULTILINE)
PARAGRAPH_SPLIT_PATTERN = re.compile(r"\n{2,}|\n(?=[A-Z])")


@dataclass(frozen=True)
class ElementCheck:
    element: str
    triggers: tuple[str, ...]
    pattern: re.Pattern[str]


ELEMENT_CHECKS = (
    ElementCheck(
        "testing",
        ("test", "testing"),
        re.compile(r"\b(test|testing|validated|validation|examine)\b", re.I),
    ),
    ElementCheck(
        "assessment",
        ("assess", "evaluation", "evaluate"),
        re.compile(r"\b(assess|assessment|evaluat|analysis|analyz)\b", re.I),
    ),
    ElementCheck(
        "documentation",
        ("document", "record"),
        re.compile(r"\b(document|record|maintain|retain|log)\b", re.I),
    ),
    ElementCheck(
        "criteria",
        ("criteria", "limit", "threshold", "standard"),
        re.compile(r"\b(criteria|limit|threshold|standard|specification|requirement)\b", re.I),
    ),
    ElementCheck(
        "procedure",
        ("procedure", "protocol", "process"),
        re.compile(r"\b(procedure|protocol|process|method|practice)\b", re.I),
    ),
    ElementCheck(
        "monitoring",
        ("monitor", "verification", "inspect"),
        re.compile(r"\b(monitor|verify|inspect|check|observe|track)\b", re.I),
    ),
    ElementCheck(
        "frequency",
        ("frequency", "schedule", "timing"),
        re.compile(r"\b(frequency|schedule|daily|weekly|monthly|annual|periodic|timing)\b", re.I),
    ),
    ElementCheck(
        "responsibility",
        ("responsibility", "responsible", "accountable"),
        re.compile(r"\b(responsib|accountab|assigned|designated|owner)\b", re.I),
    ),
)


@dataclass
class SectionMatches:
    sections: list[str] = field(default_factory=list)
    specific_matches: int = 0
    generic_matches: int = 0
    total_length: int = 0

    def context_score(self, tuning: AnalysisTuning) -> float:
        if self.specific_matches > 0:
            return tuning.context_specific_score
        if self.generic_matches >= tuning.context_generic_min_matches:
            return tuning.context_generic_score
        return tuning.context_default_score


def derive_specific_terms(requirement: Requirement, tuning: AnalysisTuning) -> list[str]:
    text = requirement.text
    terms: list[str] = list(requirement.keywords)
    terms.extend(match.strip() for match in QUOTED_PATTERN.findall(text) if match.strip())

    title_words = NON_WORD_PATTERN.sub("", requirement.title.lower()).split()
    terms.extend(word for word in title_words if len(word) > 4)

    phrases = [
        phrase.lower()
        for phrase in (match.group(0) for match in PHRASE_PATTERN.finditer(text))
        if len(phrase) > 12 and not PHRASE_STOPWORDS.search(phrase)
    ]
    terms.extend(phrases[: tuning.max_phrase_terms])

    return list(dict.fromkeys(term for term in terms if term))


def derive_generic_terms(requirement: Requirement) -> list[str]:
    text = requirement.text.lower()
    return [term for term in GENERIC_COMPLIANCE_TERMS if term in text]


def split_into_segments(text: str) -> list[str]:
    """Split on numbered section headers when present, else on paragraphs."""
    header_starts = [match.start() for match in SECTION_HEADER_PATTERN.finditer(text)]
    if not header_starts:
        return PARAGRAPH_SPLIT_PATTERN.split(text)

    segments: list[str] = []
    if header_starts[0] > 0:
        segments.append(text[: header_starts[0]])
    boundaries = header_starts + [len(text)]
    for start, end in zip(boundaries, boundaries[1:]):
        segments.append(text[start:end])
    return segments


def _count_terms(lowered: str, terms: list[str]) -> int:
    return sum(1 for term in terms if term.lower() in lowered)


def find_relevant_sections(
    text: str,
    specific_terms: list[str],
    generic_terms: list[str],
    tuning: AnalysisTuning,
) -> SectionMatches:
    result = SectionMatches()
    if not text:
        return result

    seen: set[str] = set()
    for segment in split_into_segments(text):
        if len(segment) < tuning.min_segment_chars:
            continue
        lowered = segment.lower()
        specific = _count_terms(lowered, specific_terms)
        generic = _count_terms(lowered, generic_terms)
        if specific * 2 + generic < tuning.segment_score_threshold:
            continue

        stripped = segment.strip()
        content_key = stripped[: tuning.dedupe_prefix_chars]
        if content_key in seen:
            continue
        seen.add(content_key)
        result.sections.append(stripped)
        result.specific_matches += specific
        result.generic_matches += generic
        result.total_length += len(segment)
        if len(result.sections) >= tuning.max_segments:
            break

    if result.sections or not specific_terms:
        return result

    lines = text.split("\n")
    lowered_terms = [term.lower() for term in specific_terms]
    radius = tuning.fallback_window_lines
    for index, line in enumerate(lines):
        lowered = line.lower()
        if not any(term in lowered for term in lowered_terms):
            continue
        window = "\n".join(lines[max(0, index - radius) : index + radius + 1]).strip()
        if len(window) <= tuning.fallback_window_min_chars:
            continue
        content_key = window[: tuning.dedupe_prefix_chars]
        if content_key in seen:
            continue
        seen.add(content_key)
        result.sections.append(window)
        result.specific_matches += 1
        result.total_length += len(window)
        if len(result.sections) >= tuning.max_fallback_windows:
            break
    return result


def detect_elements(combined_text: str, requirement: Requirement) -> dict[str, ElementState]:
    requirement_text = requirement.text.lower()
    details: dict[str, ElementState] = {}
    for check in ELEMENT_CHECKS:
        if any(trigger in requirement_text for trigger in check.triggers):
            details[check.element] = "yes" if check.pattern.search(combined_text) else "not_found"
    return details


def _tier_bonus(value: int, tiers: tuple[tuple[int, float], ...]) -> float:
    for minimum, bonus in tiers:
        if value >= minimum:
            return bonus
    return 0.0


def calculate_confidence(
    matches: SectionMatches,
    details: dict[str, ElementState],
    tuning: AnalysisTuning,
) -> float:
    confidence = tuning.confidence_base
    confidence += _tier_bonus(matches.specific_matches, tuning.specific_match_tiers)
    confidence += _tier_bonus(matches.generic_matches, tuning.generic_match_tiers)
    confidence += _tier_bonus(matches.total_length, tuning.evidence_length_tiers)
    confidence += matches.context_score(tuning) * tuning.context_weight
    if details:
        found = sum(1 for state in details.values() if state == "yes")
        confidence += (found / len(details)) * tuning.element_weight
    return max(tuning.confidence_base, min(tuning.confidence_ceiling, confidence))


def not_found_fact(requirement: Requirement) -> ExtractedFact:
    return ExtractedFact(
        requirement_id=requirement.id,
        requirement_text=requirement.title,
        topic_mentioned=False,
    )


def _source_file_for(section: str, documents: list[Document]) -> str:
    probe = section[:120]
    for document in documents:
        if probe and probe in document.text:
            return document.file_name
    return documents[0].file_name if documents else "Document"


def extract_requirement_fact(
    requirement: Requirement,
    full_text: str,
    documents: list[Document],
    tuning: AnalysisTuning,
) -> ExtractedFact:
    specific_terms = derive_specific_terms(requirement, tuning)
    generic_terms = derive_generic_terms(requirement)
    matches = find_relevant_sections(full_text, specific_terms, generic_terms, tuning)

    if not matches.sections:
        logger.debug(
            "requirement_not_found",
            extra={"event": "requirement_not_found", "requirement_id": requirement.id},
        )
        return not_found_fact(requirement)

    combined = " ".join(matches.sections).lower()
    details = detect_elements(combined, requirement)
    confidence = calculate_confidence(matches, details, tuning)

    logger.debug(
        "requirement_found",
        extra={
            "event": "requirement_found",
            "requirement_id": requirement.id,
            "confidence": round(confidence, 3),
            "sections": len(matches.sections),
            "specific_terms": len(specific_terms),
            "generic_terms": len(generic_terms),
        },
    )
    return ExtractedFact(
        requirement_id=requirement.id,
        requirement_text=requirement.title,
        topic_mentioned=True,
        details=details,
        quotes=tuple(section[: tuning.quote_chars] for section in matches.sections[: tuning.max_quotes]),
        source_file=_source_file_for(matches.sections[0], documents),
        confidence=confidence,
        match_quality=MatchQuality(
            has_specific_terms=matches.specific_matches > 0,
            has_generic_terms=matches.generic_matches > 0,
            section_count=len(matches.sections),
            total_match_length=matches.total_length,
            contextual_relevance=matches.context_score(tuning),
            specific_matches=matches.specific_matches,
            generic_matches=matches.generic_matches,
        ),
    )


class FactExtractor:
    """Finds supporting text for each requirement and scores how much to trust it.

    Each requirement is handled on its own against the same concatenated
    document text, so one requirement's result never depends on another's.
    """

    def __init__(self, tuning: AnalysisTuning) -> None:
        self._tuning = tuning

    def extract(self, requirements: list[Requirement], documents: list[Document]) -> list[ExtractedFact]:
        full_text = "\n\n".join(document.text for document in documents)
        if not full_text.strip():
            logger.warning("empty_document_text", extra={"event": "empty_document_text"})
            return []

        findings: list[ExtractedFact] = []
        for requirement in requirements:
            try:
                findings.append(extract_requirement_fact(requirement, full_text, documents, self._tuning))
            except Exception as exc:
                logger.warning(
                    "requirement_extraction_failed",
                    extra={
                        "event": "requirement_extraction_failed",
                        "requirement_id": requirement.id,
                        "error": str(exc),
                    },
                )
                findings.append(not_found_fact(requirement))

        logger.info(
            "extraction_completed",
            extra={
                "event": "extraction_completed",
                "requirements": len(findings),
                "found": sum(1 for fact in findings if fact.topic_mentioned),
                "high_confidence": sum(
                    1 for fact in findings if fact.confidence >= self._tuning.high_confidence_threshold
                ),
            },
        )
        return findings
