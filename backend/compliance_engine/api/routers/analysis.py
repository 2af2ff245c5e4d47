from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter, HTTPException

from compliance_engine.api.contracts import AnalysisRequest
from compliance_engine.engine import AnalysisInputError, ComplianceAnalysisEngine
from compliance_engine.models import AnalysisResult, LightweightAnalysisResult

logger = logging.getLogger("compliance_engine.api")

AnalysisEngineGetter = Callable[[], ComplianceAnalysisEngine]


def build_analysis_router(*, get_analysis_engine: AnalysisEngineGetter) -> APIRouter:
    router = APIRouter()

    @router.post("/analysis", response_model=AnalysisResult)
    async def run_analysis(payload: AnalysisRequest) -> AnalysisResult:
        try:
            return await get_analysis_engine().analyze(
                payload.checklist,
                payload.documents,
                payload.sub_module_description,
            )
        except AnalysisInputError as exc:
            logger.warning("analysis_input_rejected", extra={"event": "analysis_input_rejected", "error": str(exc)})
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @router.post("/analysis/lightweight", response_model=LightweightAnalysisResult)
    async def run_lightweight_analysis(payload: AnalysisRequest) -> LightweightAnalysisResult:
        try:
            return await get_analysis_engine().analyze_lightweight(
                payload.checklist,
                payload.documents,
                payload.sub_module_description,
            )
        except AnalysisInputError as exc:
            logger.warning("analysis_input_rejected", extra={"event": "analysis_input_rejected", "error": str(exc)})
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    return router
