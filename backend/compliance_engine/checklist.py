from __future__ import annotations

import re
from typing import Any, Callable, Mapping

from compliance_engine.models import Requirement

NUMERIC_KEY_PATTERN = re.compile(r"^\d+$")


def _coerce_keywords(value: object) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    keywords: list[str] = []
    for item in value:
        keyword = str(item).strip()
        if keyword:
            keywords.append(keyword)
    return tuple(keywords)


def _description_for(item: Mapping[str, Any]) -> str | None:
    statements = item.get("mandatoryStatements")
    if isinstance(statements, list):
        joined = "; ".join(str(statement).strip() for statement in statements if str(statement).strip())
        if joined:
            return joined
    for key in ("guidance", "description"):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _requirement_from_item(item: object) -> Requirement | None:
    if not isinstance(item, Mapping):
        return None
    identifier = str(item.get("id") or "").strip()
    title = str(item.get("text") or item.get("title") or "").strip()
    if not identifier or not title:
        return None
    return Requirement(
        id=identifier,
        title=title,
        description=_description_for(item),
        keywords=_coerce_keywords(item.get("keywords")),
    )


def _from_items(items: list[object]) -> list[Requirement]:
    return [requirement for item in items if (requirement := _requirement_from_item(item)) is not None]


def _from_array(checklist: list[object]) -> list[Requirement]:
    return _from_items(checklist)


def _from_numeric_keys(checklist: Mapping[str, object]) -> list[Requirement]:
    ordered_keys = sorted(checklist.keys(), key=lambda key: int(key))
    return _from_items([checklist[key] for key in ordered_keys])


def _from_requirements_key(checklist: Mapping[str, object]) -> list[Requirement]:
    items = checklist.get("requirements")
    return _from_items(items) if isinstance(items, list) else []


def _from_sections(checklist: Mapping[str, object]) -> list[Requirement]:
    sections = checklist.get("sections")
    if isinstance(sections, Mapping):
        section_values = list(sections.values())
    elif isinstance(sections, list):
        section_values = sections
    else:
        return []

    requirements: list[Requirement] = []
    for section in section_values:
        if not isinstance(section, Mapping):
            continue
        questions = section.get("questions")
        if isinstance(questions, list):
            requirements.extend(_from_items(questions))
    return requirements


def _is_numeric_keyed(checklist: Mapping[str, object]) -> bool:
    return bool(checklist) and all(NUMERIC_KEY_PATTERN.fullmatch(str(key)) for key in checklist.keys())


def _shape_handlers(checklist: object) -> list[Callable[[Any], list[Requirement]]]:
    if isinstance(checklist, list):
        return [_from_array]
    if not isinstance(checklist, Mapping):
        return []
    if _is_numeric_keyed(checklist):
        return [_from_numeric_keys]

    handlers: list[Callable[[Any], list[Requirement]]] = []
    if isinstance(checklist.get("requirements"), list):
        handlers.append(_from_requirements_key)
    if "sections" in checklist:
        handlers.append(_from_sections)
    return handlers


def _dedupe(requirements: list[Requirement]) -> list[Requirement]:
    seen: set[str] = set()
    result: list[Requirement] = []
    for requirement in requirements:
        if requirement.id in seen:
            continue
        seen.add(requirement.id)
        result.append(requirement)
    return result


def normalize_checklist(checklist: object) -> list[Requirement]:
    """Flatten any supported checklist shape into requirements in source order.

    Supported shapes: a list of items, a numeric-keyed mapping, a mapping with
    a ``requirements`` list, and a mapping of ``sections`` each holding
    ``questions``. Anything else yields an empty list.
    """
    if isinstance(checklist, list) and all(isinstance(item, Requirement) for item in checklist):
        return _dedupe(list(checklist))

    requirements: list[Requirement] = []
    for handler in _shape_handlers(checklist):
        requirements.extend(handler(checklist))
    return _dedupe(requirements)


def requirement_titles(requirements: list[Requirement]) -> dict[str, str]:
    return {requirement.id: requirement.title for requirement in requirements}
