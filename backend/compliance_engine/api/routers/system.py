from __future__ import annotations

from fastapi import APIRouter

from compliance_engine.config import settings


router = APIRouter()


@router.get("/")
def root() -> dict[str, str]:
    return {"service": "compliance-engine", "status": "running"}


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "environment": settings.app_env}


@router.get("/ready")
def ready() -> dict[str, object]:
    return {
        "status": "ready",
        "environment": settings.app_env,
        "checks": {"bedrock_model_configured": bool(settings.bedrock_model_id.strip())},
    }
