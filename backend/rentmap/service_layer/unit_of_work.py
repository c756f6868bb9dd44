# rentmap/service_layer/unit_of_work.py
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..adapters.sqlalchemy_repos import SqlAlchemyRepos


class SqlAlchemyUnitOfWork:
    """
    One session + repos; commits on clean exit, rolls back on exception.

        async with SqlAlchemyUnitOfWork(session_maker) as uow:
            await uow.repos.posts.mark_processed(post_id)
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker
        self.session: AsyncSession | None = None
        self.repos: SqlAlchemyRepos | None = None

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self._session_maker()
        self.repos = SqlAlchemyRepos(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc:
                await self.rollback()
            else:
                await self.commit()
        finally:
            if self.session:
                await self.session.close()

    async def commit(self) -> None:
        assert self.session is not None
        await self.session.commit()

    async def rollback(self) -> None:
        assert self.session is not None
        await self.session.rollback()
