# rentmap/adapters/repos/usage.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import AiUsageRecord


class UsageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        *,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        request_id: str | None = None,
        purpose: str | None = None,
        created_at: datetime | None = None,
    ) -> AiUsageRecord:
        rec = AiUsageRecord(
            provider=provider,
            model=model,
            input_tokens=int(input_tokens),
            output_tokens=int(output_tokens),
            total_tokens=int(input_tokens) + int(output_tokens),
            cost=float(cost),
            request_id=request_id,
            purpose=purpose,
        )
        if created_at is not None:
            rec.created_at = created_at
        self.session.add(rec)
        await self.session.flush()
        return rec

    async def total_cost_between(self, start: datetime, end: datetime) -> float:
        q = select(func.coalesce(func.sum(AiUsageRecord.cost), 0.0)).where(
            AiUsageRecord.created_at >= start,
            AiUsageRecord.created_at < end,
        )
        return float((await self.session.execute(q)).scalar_one())

    async def list_between(self, start: datetime, end: datetime) -> list[AiUsageRecord]:
        q = (
            select(AiUsageRecord)
            .where(AiUsageRecord.created_at >= start, AiUsageRecord.created_at < end)
            .order_by(AiUsageRecord.created_at.asc())
        )
        return list((await self.session.execute(q)).scalars().all())
