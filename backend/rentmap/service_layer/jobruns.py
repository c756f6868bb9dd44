# rentmap/service_layer/jobruns.py
from __future__ import annotations

import json
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import JobRun, JobRunStatus, utcnow


async def start_job(session: AsyncSession, job_name: str, meta: dict[str, Any] | None = None) -> JobRun:
    jr = JobRun(
        job_name=job_name,
        started_at=utcnow(),
        status=JobRunStatus.running,
        meta_json=json.dumps(meta or {}),
    )
    session.add(jr)
    await session.flush()
    return jr


async def finish_job_success(session: AsyncSession, jr: JobRun, summary: dict[str, Any]) -> None:
    jr.status = JobRunStatus.success
    jr.finished_at = utcnow()
    jr.summary_json = json.dumps(summary, default=str)
    jr.error = None
    await session.flush()


async def finish_job_fail(session: AsyncSession, jr: JobRun, err: Exception) -> None:
    jr.status = JobRunStatus.failed
    jr.finished_at = utcnow()
    jr.error = f"{type(err).__name__}: {err}"
    await session.flush()


async def latest_runs(session: AsyncSession, job_name: str | None = None, limit: int = 10) -> list[dict[str, Any]]:
    q = select(JobRun).order_by(JobRun.started_at.desc(), JobRun.id.desc()).limit(int(limit))
    if job_name:
        q = q.where(JobRun.job_name == job_name)
    rows = (await session.execute(q)).scalars().all()
    return [
        {
            "id": jr.id,
            "job_name": jr.job_name,
            "status": jr.status.value,
            "started_at": jr.started_at.isoformat() if jr.started_at else None,
            "finished_at": jr.finished_at.isoformat() if jr.finished_at else None,
            "error": jr.error,
            "meta": json.loads(jr.meta_json) if jr.meta_json else {},
            "summary": json.loads(jr.summary_json) if jr.summary_json else None,
        }
        for jr in rows
    ]
