# rentmap/adapters/repos/posts.py
from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.types import RawPostIn
from ...models import Listing, RawPost, utcnow


class RawPostRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, post_id: int) -> RawPost | None:
        return await self.session.get(RawPost, post_id)

    async def get_by_key(self, channel: str, external_id: str) -> RawPost | None:
        q = select(RawPost).where(RawPost.channel == channel, RawPost.external_id == external_id)
        return (await self.session.execute(q)).scalars().first()

    async def upsert(self, post: RawPostIn) -> tuple[RawPost, bool]:
        """
        Insert-or-get on (channel, external_id). Returns (row, created).

        A concurrent insert that wins the race surfaces as IntegrityError; we
        roll back and return the winner, so duplicates are never an error.
        The rollback discards anything else pending on this session.
        """
        existing = await self.get_by_key(post.channel, post.external_id)
        if existing is not None:
            return existing, False

        row = RawPost(
            channel=post.channel,
            external_id=post.external_id,
            text=post.text,
            media_json=json.dumps(list(post.media)),
            captured_at=post.captured_at or utcnow(),
            processed=False,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            existing = await self.get_by_key(post.channel, post.external_id)
            if existing is None:
                raise
            return existing, False
        return row, True

    async def mark_processed(self, post_id: int) -> None:
        await self.session.execute(update(RawPost).where(RawPost.id == post_id).values(processed=True, updated_at=utcnow()))

    async def list_unprocessed(self, channel: str, limit: int = 100) -> list[RawPost]:
        q = (
            select(RawPost)
            .where(RawPost.channel == channel, RawPost.processed == False)  # noqa: E712
            .order_by(RawPost.captured_at.asc(), RawPost.id.asc())
            .limit(int(limit))
        )
        return list((await self.session.execute(q)).scalars().all())

    async def delete_processed_before(self, cutoff: datetime) -> int:
        """Old processed posts that never became a listing."""
        has_listing = select(Listing.raw_post_id)
        stmt = delete(RawPost).where(
            RawPost.processed == True,  # noqa: E712
            RawPost.created_at < cutoff,
            RawPost.id.not_in(has_listing),
        )
        res = await self.session.execute(stmt)
        return int(res.rowcount or 0)


def media_urls(post: RawPost) -> list[str]:
    if not post.media_json:
        return []
    try:
        v = json.loads(post.media_json)
    except ValueError:
        return []
    return [str(x) for x in v] if isinstance(v, list) else []
