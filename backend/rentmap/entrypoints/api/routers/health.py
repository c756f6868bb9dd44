# rentmap/entrypoints/api/routers/health.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from ..deps import get_services, require_api_key
from ....config import settings
from ....container import Services
from ....service_layer.jobruns import latest_runs

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/debug/config", dependencies=[Depends(require_api_key)])
def debug_config() -> dict[str, Any]:
    def _redact(v: str | None) -> str | None:
        if not v:
            return v
        if len(v) <= 8:
            return "***"
        return v[:4] + "***" + v[-4:]

    return {
        "ENV": settings.ENV,
        "RENTMAP_DB_URL": settings.RENTMAP_DB_URL,
        "OPENROUTER_MODEL": settings.OPENROUTER_MODEL,
        "OPENROUTER_API_KEY": _redact(settings.OPENROUTER_API_KEY),
        "OPENAI_MODEL": settings.OPENAI_MODEL,
        "OPENAI_API_KEY": _redact(settings.OPENAI_API_KEY),
        "GOOGLE_MAPS_API_KEY_SET": bool(settings.GOOGLE_MAPS_API_KEY),
        "OPENCAGE_API_KEY_SET": bool(settings.OPENCAGE_API_KEY),
        "AI_MONTHLY_SPENDING_LIMIT": settings.AI_MONTHLY_SPENDING_LIMIT,
        "PUBLISH_CONFIDENCE_THRESHOLD": settings.PUBLISH_CONFIDENCE_THRESHOLD,
        "SCHED_ENABLED": settings.SCHED_ENABLED,
    }


@router.get("/debug/pipeline", dependencies=[Depends(require_api_key)])
def debug_pipeline(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {
        "running": services.pipeline.running,
        "stages": services.pipeline.stats(),
        "realtime": {
            "connections": services.hub.connection_count(),
            **services.subscriptions.stats(),
        },
        "cluster_cache_entries": services.clustering.cache_size(),
    }


@router.get("/debug/job_runs/latest", dependencies=[Depends(require_api_key)])
async def debug_job_runs(
    job_name: str | None = Query(None),
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    async with services.session_maker() as session:
        runs = await latest_runs(session, job_name=job_name, limit=limit)
    return {"count": len(runs), "runs": runs}
