from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class PhaseResult(Generic[T]):
    """Value produced at a phase boundary, tagged with why a fallback fired.

    A phase that talks to the LLM never raises on a bad reply; it returns
    ``PhaseResult.fallback(default, reason)`` so the orchestrator can keep going
    and still report which phase degraded.
    """

    value: T
    fallback_reason: str | None = None

    @classmethod
    def ok(cls, value: T) -> "PhaseResult[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, reason: str) -> "PhaseResult[T]":
        return cls(value=value, fallback_reason=reason)

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None
