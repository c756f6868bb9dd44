# rentmap/entrypoints/api/routers/ingest.py
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_services, require_api_key
from ....container import Services
from ....domain.types import RawPostIn as RawPost
from ....schemas import MaintenanceOut, ReparseIn, ReparseOut, SubmitPostsIn, SubmitPostsOut
from ....service_layer.maintenance import run_maintenance

router = APIRouter(tags=["ingest"])


def _naive_utc(dt: datetime | None) -> datetime | None:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


@router.post("/posts", response_model=SubmitPostsOut, dependencies=[Depends(require_api_key)])
async def submit_posts(body: SubmitPostsIn, services: Services = Depends(get_services)) -> SubmitPostsOut:
    posts = [
        RawPost(
            channel=p.channel,
            external_id=p.external_id,
            text=p.text,
            media=tuple(p.media),
            captured_at=_naive_utc(p.captured_at),
        )
        for p in body.posts
    ]
    return SubmitPostsOut(queued=services.pipeline.submit_posts(posts, priority=body.priority))


@router.post("/admin/reparse", response_model=ReparseOut, dependencies=[Depends(require_api_key)])
async def admin_reparse(body: ReparseIn, services: Services = Depends(get_services)) -> ReparseOut:
    channels = [c.strip() for c in body.channels if c.strip()]
    if not channels:
        raise HTTPException(status_code=400, detail="channels must not be empty")
    res = await services.pipeline.reparse_unprocessed(channels, limit=body.limit)
    return ReparseOut(**res)


@router.post("/admin/maintenance", response_model=MaintenanceOut, dependencies=[Depends(require_api_key)])
async def admin_maintenance(services: Services = Depends(get_services)) -> MaintenanceOut:
    summary = await run_maintenance(services.session_maker)
    return MaintenanceOut(**summary)
