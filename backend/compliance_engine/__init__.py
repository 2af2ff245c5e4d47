from compliance_engine.checklist import normalize_checklist
from compliance_engine.engine import AnalysisInputError, ComplianceAnalysisEngine
from compliance_engine.llm_client import BedrockCompletionClient, CompletionClient, LLMClientError
from compliance_engine.models import AnalysisResult, Document, LightweightAnalysisResult, Requirement

__all__ = [
    "AnalysisInputError",
    "AnalysisResult",
    "BedrockCompletionClient",
    "CompletionClient",
    "ComplianceAnalysisEngine",
    "Document",
    "LLMClientError",
    "LightweightAnalysisResult",
    "Requirement",
    "normalize_checklist",
]
