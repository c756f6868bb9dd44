# rentmap/adapters/ingestion/base.py
from __future__ import annotations

from typing import Protocol

from ...domain.types import RawPostIn


class ChannelSource(Protocol):
    """Something that can hand us the latest posts of a channel."""

    async def fetch(self, channel: str, *, limit: int = 100) -> list[RawPostIn]:
        raise NotImplementedError
