from __future__ import annotations

import json
import re
from typing import Any

from compliance_engine.outcome import PhaseResult

FIRST_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*", flags=re.IGNORECASE)
TRAILING_COMMA_OBJECT = re.compile(r",\s*}")
TRAILING_COMMA_ARRAY = re.compile(r",\s*]")
RECOMMENDATIONS_FRAGMENT = re.compile(r'"recommendations"\s*:\s*\[[\s\S]*\]')


class JsonExtractionError(ValueError):
    """Raised when no JSON object can be recovered from model output."""


def extract_first_json_object(raw: str) -> dict[str, Any]:
    """Parse the outermost ``{...}`` span of a model reply.

    Used for the relevance and validation replies, which are short and are
    either well formed or discarded.
    """
    match = FIRST_OBJECT_PATTERN.search(raw or "")
    if not match:
        raise JsonExtractionError("Response did not contain a JSON object.")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise JsonExtractionError(f"Response contained malformed JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise JsonExtractionError("Response JSON must be an object.")
    return payload


def clean_json_candidate(raw: str) -> str | None:
    candidate = CODE_FENCE_PATTERN.sub("", (raw or "").strip()).replace("```", "")
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    candidate = candidate[start : end + 1]
    candidate = TRAILING_COMMA_OBJECT.sub("}", candidate)
    candidate = TRAILING_COMMA_ARRAY.sub("]", candidate)
    candidate = candidate.replace("\r", "").replace("\n", " ").replace("\t", " ")
    return re.sub(r"\s+", " ", candidate)


def parse_recommendations_payload(raw: str) -> PhaseResult[list[Any] | None]:
    """Recover the ``recommendations`` array from a loosely formatted reply.

    Strips code fences, trims to the outer braces, removes trailing commas and
    collapses whitespace before parsing. If the whole object still fails to
    parse, only the ``"recommendations": [...]`` fragment is retried. The
    value is ``None`` whenever nothing usable was recovered.
    """
    candidate = clean_json_candidate(raw)
    if candidate is None:
        return PhaseResult.fallback(None, "no_json_boundaries")

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        fragment = RECOMMENDATIONS_FRAGMENT.search(candidate)
        if not fragment:
            return PhaseResult.fallback(None, "json_parse_failed")
        try:
            payload = json.loads("{" + fragment.group(0) + "}")
        except json.JSONDecodeError:
            return PhaseResult.fallback(None, "json_repair_failed")
        items = payload.get("recommendations")
        if not isinstance(items, list):
            return PhaseResult.fallback(None, "invalid_structure")
        return PhaseResult.fallback(items, "repaired_fragment")

    if not isinstance(payload, dict) or not isinstance(payload.get("recommendations"), list):
        return PhaseResult.fallback(None, "invalid_structure")
    return PhaseResult.ok(payload["recommendations"])
