# rentmap/adapters/ingestion/stub_json.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ...config import settings
from ...domain.parsing import to_str
from ...domain.types import RawPostIn
from .base import ChannelSource

log = logging.getLogger(__name__)


def _as_list_of_dicts(payload: Any) -> list[dict[str, Any]]:
    """
    Accept either:
      - list[dict]
      - {"messages": list[dict]} (Telegram export shape)
    """
    if isinstance(payload, list):
        return [x for x in payload if isinstance(x, dict)]
    if isinstance(payload, dict):
        v = payload.get("messages")
        if isinstance(v, list):
            return [x for x in v if isinstance(x, dict)]
    return []


def _coerce_datetime(x: Any) -> datetime | None:
    if x is None:
        return None
    if isinstance(x, (int, float)):
        try:
            return datetime.fromtimestamp(float(x), tz=timezone.utc).replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    s = to_str(x)
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.replace(tzinfo=None)


def _message_text(it: dict[str, Any]) -> str:
    text = it.get("text") or it.get("message") or it.get("caption") or ""
    # Telegram exports split formatted text into fragments
    if isinstance(text, list):
        parts = []
        for frag in text:
            if isinstance(frag, str):
                parts.append(frag)
            elif isinstance(frag, dict):
                parts.append(str(frag.get("text") or ""))
        text = "".join(parts)
    return str(text)


@dataclass
class StubJsonChannelSource(ChannelSource):
    """
    Offline channel source for development/testing.

    Reads channel messages from fixtures:
      backend/data/channels/<channel>.json
    """

    fixtures_dir: Path

    @classmethod
    def from_settings(cls) -> "StubJsonChannelSource":
        # uvicorn is typically launched from backend/, so this is backend/data/channels
        return cls(fixtures_dir=Path(settings.CHANNEL_FIXTURES_DIR))

    async def fetch(self, channel: str, *, limit: int = 100) -> list[RawPostIn]:
        name = channel.lstrip("@")
        path = self.fixtures_dir / f"{name}.json"
        if not path.exists():
            # Dev-friendly: missing fixture means "no new posts"
            log.debug("no fixture for channel %s at %s", channel, path)
            return []

        items = _as_list_of_dicts(json.loads(path.read_text(encoding="utf-8")))
        out: list[RawPostIn] = []
        for it in items[: int(limit)]:
            post = self._canonicalize(it, channel=name)
            if post is not None:
                out.append(post)
        return out

    def _canonicalize(self, it: dict[str, Any], *, channel: str) -> RawPostIn | None:
        external_id = to_str(it.get("id") or it.get("message_id") or it.get("externalId"))
        if not external_id:
            return None

        media_raw = it.get("media") or it.get("photos") or []
        if isinstance(media_raw, str):
            media_raw = [media_raw]
        media = tuple(s for s in (to_str(m) for m in media_raw if not isinstance(m, dict)) if s)

        return RawPostIn(
            channel=channel,
            external_id=external_id,
            text=_message_text(it),
            media=media,
            captured_at=_coerce_datetime(it.get("date") or it.get("capturedAt")),
        )
