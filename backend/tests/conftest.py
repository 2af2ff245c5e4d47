from __future__ import annotations

from typing import Callable

import pytest

from compliance_engine.config import AnalysisTuning
from compliance_engine.models import Document, Requirement


class ScriptedCompletionClient:
    """Completion client double that answers from a prompt -> reply function."""

    def __init__(self, reply: Callable[[str], str]) -> None:
        self._reply = reply
        self.prompts: list[str] = []
        self.max_tokens: list[int] = []
        self.slot_waits = 0

    async def wait_for_slot(self) -> None:
        self.slot_waits += 1

    async def complete(self, prompt: str, max_tokens: int) -> str:
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        return self._reply(prompt)


PEST_AREAS = (
    ("PEST CONTROL SCOPE", "bakery"),
    ("WAREHOUSE COVERAGE", "warehouse"),
    ("LOADING DOCK", "loading dock"),
    ("DRY STORE", "dry store"),
)


def pest_control_text() -> str:
    sections = []
    for index, (header, area) in enumerate(PEST_AREAS, start=1):
        sections.append(
            f"{index}. {header}\n"
            f"The pest control program for the {area} is reviewed by the site manager. "
            "Monitoring stations are placed along every wall and each visit is written in the pest control record book. "
            f"The pest control program contractor visits the {area} and reports activity, bait consumption and any "
            f"sightings to the quality team so that the program stays effective across the {area}.\n"
        )
    return "\n".join(sections)


@pytest.fixture
def scripted_client() -> type[ScriptedCompletionClient]:
    return ScriptedCompletionClient


@pytest.fixture
def tuning() -> AnalysisTuning:
    return AnalysisTuning()


@pytest.fixture
def pest_requirement() -> Requirement:
    return Requirement(id="1.01", title="Pest control program", keywords=("pest control",))


@pytest.fixture
def capa_requirement() -> Requirement:
    return Requirement(id="1.02", title="CAPA trigger thresholds")


@pytest.fixture
def pest_document() -> Document:
    return Document(file_name="pest.txt", text=pest_control_text())
