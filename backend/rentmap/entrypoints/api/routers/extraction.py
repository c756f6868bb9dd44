# rentmap/entrypoints/api/routers/extraction.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query

from ..deps import get_services, require_api_key
from ....container import Services
from ....models import utcnow
from ....schemas import ExtractBatchIn, ExtractIn, ExtractionOut, SpendingOut

router = APIRouter(tags=["extraction"])


@router.post("/extract", response_model=ExtractionOut, dependencies=[Depends(require_api_key)])
async def extract(body: ExtractIn, services: Services = Depends(get_services)) -> ExtractionOut:
    """Synchronous extraction, bypassing the queue."""
    result = await services.extraction.analyze(body.text)
    return ExtractionOut(**result.to_dict())


@router.post("/extract/batch", response_model=list[ExtractionOut], dependencies=[Depends(require_api_key)])
async def extract_batch(body: ExtractBatchIn, services: Services = Depends(get_services)) -> list[ExtractionOut]:
    results = await services.extraction.batch_analyze(body.texts)
    return [ExtractionOut(**r.to_dict()) for r in results]


@router.get("/ai/usage", dependencies=[Depends(require_api_key)])
async def ai_usage(
    days: int = Query(30, ge=1, le=366),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    end: datetime = utcnow() + timedelta(seconds=1)
    return await services.governor.usage_stats(start=end - timedelta(days=days), end=end)


@router.get("/ai/spending", response_model=SpendingOut, dependencies=[Depends(require_api_key)])
async def ai_spending(services: Services = Depends(get_services)) -> SpendingOut:
    status = await services.governor.check_spending_limits()
    month = await services.governor.current_month_spending()
    return SpendingOut(
        isNearLimit=status.is_near_limit,
        isOverLimit=status.is_over_limit,
        message=status.message,
        spent=month["spent"],
        limit=month["limit"],
        percentage=month["percentage"],
        remaining=month["remaining"],
        daysRemaining=month["daysRemaining"],
    )
