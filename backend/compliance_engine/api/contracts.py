from typing import Any

from pydantic import BaseModel, Field

from compliance_engine.models import Document


class AnalysisRequest(BaseModel):
    checklist: Any = Field(default_factory=list)
    documents: list[Document] = Field(default_factory=list)
    sub_module_description: str | None = Field(default=None, max_length=2000)
