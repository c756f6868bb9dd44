# rentmap/service_layer/cost_governor.py
from __future__ import annotations

import calendar
import logging
import math
from datetime import datetime, timedelta
from typing import Any

import tiktoken
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import settings
from ..domain.types import CostCalculation, SpendingStatus
from ..models import utcnow
from .unit_of_work import SqlAlchemyUnitOfWork

log = logging.getLogger(__name__)


# USD per 1K tokens: provider -> model (or model prefix) -> (input, output)
MODEL_PRICING: dict[str, dict[str, tuple[float, float]]] = {
    "openai": {
        "gpt-3.5-turbo": (0.0005, 0.0015),
        "gpt-4": (0.03, 0.06),
        "gpt-4-turbo": (0.01, 0.03),
        "gpt-4o": (0.005, 0.015),
        "gpt-4o-mini": (0.00015, 0.0006),
    },
    "anthropic": {
        "claude-3-opus": (0.015, 0.075),
        "claude-3-sonnet": (0.003, 0.015),
        "claude-3-haiku": (0.00025, 0.00125),
        "claude-2.1": (0.008, 0.024),
    },
    "openrouter": {
        "deepseek/deepseek-chat": (0.00014, 0.00028),
        "openai/gpt-3.5-turbo": (0.0005, 0.0015),
        "openai/gpt-4o-mini": (0.00015, 0.0006),
    },
}

DEFAULT_PRICING: tuple[float, float] = (0.001, 0.002)

# per-message framing overhead in the chat format
_TOKENS_PER_MESSAGE = 3
_TOKENS_REPLY_PRIMER = 3

_ENCODING: Any = None
_ENCODING_FAILED = False


def _get_encoding() -> Any:
    global _ENCODING, _ENCODING_FAILED
    if _ENCODING is None and not _ENCODING_FAILED:
        try:
            _ENCODING = tiktoken.get_encoding("cl100k_base")
        except Exception as e:
            # BPE files are fetched on first use; offline boxes fall back to the estimate
            _ENCODING_FAILED = True
            log.warning("tiktoken encoding unavailable, using length estimate: %s", e)
    return _ENCODING


def count_tokens(text: str | None) -> int:
    """Token count for `text`; never raises."""
    if not text:
        return 0
    enc = _get_encoding()
    if enc is not None:
        try:
            return len(enc.encode(text, disallowed_special=()))
        except Exception as e:
            log.debug("tiktoken encode failed, using length estimate: %s", e)
    return math.ceil(len(text) / 4)


def count_messages_tokens(messages: list[dict[str, str]]) -> int:
    total = 0
    for m in messages:
        total += _TOKENS_PER_MESSAGE + count_tokens(m.get("content") or "")
    return total + _TOKENS_REPLY_PRIMER


def lookup_pricing(provider: str, model: str) -> tuple[float, float] | None:
    table = MODEL_PRICING.get((provider or "").lower())
    if not table:
        return None
    if model in table:
        return table[model]
    best: str | None = None
    for key in table:
        if model.startswith(key) and (best is None or len(key) > len(best)):
            best = key
    return table[best] if best else None


def calculate_cost(provider: str, model: str, input_tokens: int, output_tokens: int) -> CostCalculation:
    pricing = lookup_pricing(provider, model)
    if pricing is None:
        log.warning("No pricing for %s/%s, using default rate", provider, model)
        pricing = DEFAULT_PRICING
    input_cost = (max(0, input_tokens) / 1000.0) * pricing[0]
    output_cost = (max(0, output_tokens) / 1000.0) * pricing[1]
    return CostCalculation(cost=input_cost + output_cost, input_cost=input_cost, output_cost=output_cost)


def month_window(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def _bucket() -> dict[str, float]:
    return {"cost": 0.0, "tokens": 0, "requests": 0}


class CostGovernor:
    """
    Tracks paid inference usage and gates calls on the monthly spending ceiling.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        monthly_limit: float = 100.0,
        warn_ratio: float = 0.8,
    ) -> None:
        self.session_maker = session_maker
        self.monthly_limit = float(monthly_limit)
        self.warn_ratio = float(warn_ratio)

    @classmethod
    def from_settings(cls, session_maker: async_sessionmaker[AsyncSession]) -> "CostGovernor":
        return cls(
            session_maker,
            monthly_limit=settings.AI_MONTHLY_SPENDING_LIMIT,
            warn_ratio=settings.AI_SPENDING_WARN_RATIO,
        )

    count_tokens = staticmethod(count_tokens)
    count_messages_tokens = staticmethod(count_messages_tokens)
    calculate_cost = staticmethod(calculate_cost)

    def estimate_cost(self, provider: str, model: str, text: str, output_tokens: int = 500) -> CostCalculation:
        return calculate_cost(provider, model, count_tokens(text), output_tokens)

    async def track_usage(
        self,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        *,
        request_id: str | None = None,
        purpose: str | None = None,
        cost: float | None = None,
    ) -> float:
        """
        Persist one usage record and return its cost. Storage failures are logged, not raised.
        """
        if cost is None:
            cost = calculate_cost(provider, model, input_tokens, output_tokens).cost
        try:
            async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
                await uow.repos.usage.add(
                    provider=provider,
                    model=model,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    cost=cost,
                    request_id=request_id,
                    purpose=purpose,
                )
        except Exception:
            log.exception("Failed to record AI usage for %s/%s (request_id=%s)", provider, model, request_id)
        return cost

    async def _spent_between(self, start: datetime, end: datetime) -> float:
        async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
            return await uow.repos.usage.total_cost_between(start, end)

    async def current_month_spending(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or utcnow()
        start, end = month_window(now)
        spent = await self._spent_between(start, end)
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        return {
            "spent": round(spent, 6),
            "limit": self.monthly_limit,
            "percentage": (spent / self.monthly_limit * 100.0) if self.monthly_limit > 0 else 0.0,
            "remaining": max(0.0, self.monthly_limit - spent),
            "daysRemaining": days_in_month - now.day,
        }

    async def check_spending_limits(self, now: datetime | None = None) -> SpendingStatus:
        start, end = month_window(now or utcnow())
        spent = await self._spent_between(start, end)
        limit = self.monthly_limit

        if limit <= 0 or spent >= limit:
            return SpendingStatus(
                is_near_limit=True,
                is_over_limit=True,
                message=f"AI spending limit reached: ${spent:.2f} of ${limit:.2f} this month",
                spent=spent,
                limit=limit,
            )
        if spent >= limit * self.warn_ratio:
            return SpendingStatus(
                is_near_limit=True,
                is_over_limit=False,
                message=f"AI spending at {spent / limit * 100:.0f}% of monthly limit (${spent:.2f} of ${limit:.2f})",
                spent=spent,
                limit=limit,
            )
        return SpendingStatus(is_near_limit=False, is_over_limit=False, message=None, spent=spent, limit=limit)

    async def usage_stats(self, start: datetime | None = None, end: datetime | None = None) -> dict[str, Any]:
        end = end or utcnow() + timedelta(seconds=1)
        start = start or (end - timedelta(days=30))
        async with SqlAlchemyUnitOfWork(self.session_maker) as uow:
            rows = await uow.repos.usage.list_between(start, end)

        by_provider: dict[str, dict[str, float]] = {}
        by_model: dict[str, dict[str, float]] = {}
        by_day: dict[str, dict[str, float]] = {}
        total_cost = 0.0
        total_tokens = 0
        for r in rows:
            total_cost += r.cost
            total_tokens += r.total_tokens
            for table, key in (
                (by_provider, r.provider),
                (by_model, f"{r.provider}/{r.model}"),
                (by_day, r.created_at.date().isoformat()),
            ):
                b = table.setdefault(key, _bucket())
                b["cost"] += r.cost
                b["tokens"] += r.total_tokens
                b["requests"] += 1

        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "totalCost": total_cost,
            "totalTokens": total_tokens,
            "totalRequests": len(rows),
            "byProvider": by_provider,
            "byModel": by_model,
            "byDay": by_day,
        }
