from contextlib import asynccontextmanager
from functools import lru_cache
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from compliance_engine.api.routers.analysis import build_analysis_router
from compliance_engine.api.routers.system import router as system_router
from compliance_engine.config import settings
from compliance_engine.engine import ComplianceAnalysisEngine
from compliance_engine.llm_client import BedrockCompletionClient
from compliance_engine.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)

logger = logging.getLogger("compliance_engine.api")


@lru_cache(maxsize=1)
def _cached_completion_client() -> BedrockCompletionClient:
    return BedrockCompletionClient(settings=settings)


@lru_cache(maxsize=1)
def _cached_analysis_engine() -> ComplianceAnalysisEngine:
    return ComplianceAnalysisEngine(client=_cached_completion_client(), tuning=settings.analysis)


def get_analysis_engine() -> ComplianceAnalysisEngine:
    return _cached_analysis_engine()


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    logger.info(
        "application_startup",
        extra={
            "event": "application_startup",
            "environment": settings.app_env,
            "model_id": settings.bedrock_model_id,
        },
    )
    yield
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", settings.request_id_header],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        token = set_request_id(request_id)
        started = time.perf_counter()

        logger.info(
            "request_started",
            extra={
                "event": "request_started",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "query": sanitize_for_logging(dict(request.query_params)),
                "client_ip": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
            response.headers[settings.request_id_header] = request_id
            logger.info(
                "request_completed",
                extra={
                    "event": "request_completed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            return response
        except Exception:
            logger.exception(
                "request_failed",
                extra={
                    "event": "request_failed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            raise
        finally:
            reset_request_id(token)

    app.include_router(system_router)
    # Resolved per request so tests can monkeypatch the module-level getter.
    app.include_router(build_analysis_router(get_analysis_engine=lambda: get_analysis_engine()))
    return app


app = create_app()
