# tests/test_cost_governor.py
from datetime import datetime

import pytest

from rentmap.service_layer import cost_governor
from rentmap.service_layer.cost_governor import (
    DEFAULT_PRICING,
    CostGovernor,
    calculate_cost,
    count_messages_tokens,
    count_tokens,
    lookup_pricing,
    month_window,
)


def test_exact_and_prefix_pricing():
    assert lookup_pricing("openai", "gpt-3.5-turbo") == (0.0005, 0.0015)
    # dated snapshots resolve to the longest matching prefix
    assert lookup_pricing("openai", "gpt-4o-mini-2024-07-18") == (0.00015, 0.0006)
    assert lookup_pricing("openai", "gpt-4-0613") == (0.03, 0.06)
    assert lookup_pricing("OpenRouter", "deepseek/deepseek-chat") == (0.00014, 0.00028)
    assert lookup_pricing("nobody", "gpt-4") is None


def test_calculate_cost():
    c = calculate_cost("openai", "gpt-3.5-turbo", 1000, 1000)
    assert c.input_cost == pytest.approx(0.0005)
    assert c.output_cost == pytest.approx(0.0015)
    assert c.cost == pytest.approx(0.002)


def test_unknown_model_uses_default_rate():
    c = calculate_cost("local", "llama", 2000, 1000)
    assert c.cost == pytest.approx(2 * DEFAULT_PRICING[0] + DEFAULT_PRICING[1])


def test_token_count_falls_back_to_length_estimate(monkeypatch):
    monkeypatch.setattr(cost_governor, "_get_encoding", lambda: None)
    assert count_tokens("") == 0
    assert count_tokens(None) == 0
    assert count_tokens("abcdefghi") == 3
    assert count_messages_tokens([{"role": "user", "content": "abcd"}]) == 3 + 1 + 3


def test_month_window_rolls_over_year():
    start, end = month_window(datetime(2025, 12, 15, 13, 30))
    assert start == datetime(2025, 12, 1)
    assert end == datetime(2026, 1, 1)

    start, end = month_window(datetime(2026, 2, 28))
    assert (start, end) == (datetime(2026, 2, 1), datetime(2026, 3, 1))


async def test_near_limit_at_85_percent(async_session_maker):
    gov = CostGovernor(async_session_maker, monthly_limit=100.0, warn_ratio=0.8)
    await gov.track_usage("openai", "gpt-4", 1000, 1000, cost=85.0)

    status = await gov.check_spending_limits()
    assert status.is_near_limit is True
    assert status.is_over_limit is False
    assert status.spent == pytest.approx(85.0)
    assert "85%" in status.message


async def test_over_limit(async_session_maker):
    gov = CostGovernor(async_session_maker, monthly_limit=10.0)
    await gov.track_usage("openai", "gpt-4", 10, 10, cost=6.0)
    await gov.track_usage("openai", "gpt-4", 10, 10, cost=4.0)

    status = await gov.check_spending_limits()
    assert status.is_over_limit is True
    assert status.is_near_limit is True


async def test_zero_limit_is_always_over(async_session_maker):
    gov = CostGovernor(async_session_maker, monthly_limit=0)
    status = await gov.check_spending_limits()
    assert status.is_over_limit is True


async def test_under_limit_has_no_message(async_session_maker):
    gov = CostGovernor(async_session_maker, monthly_limit=100.0)
    await gov.track_usage("openrouter", "deepseek/deepseek-chat", 400, 100)
    status = await gov.check_spending_limits()
    assert status.is_near_limit is False
    assert status.is_over_limit is False
    assert status.message is None


async def test_track_usage_computes_cost_and_stats(async_session_maker):
    gov = CostGovernor(async_session_maker, monthly_limit=100.0)
    cost = await gov.track_usage("openai", "gpt-3.5-turbo", 1000, 1000, request_id="r1", purpose="extraction")
    assert cost == pytest.approx(0.002)
    await gov.track_usage("openrouter", "deepseek/deepseek-chat", 1000, 0)

    stats = await gov.usage_stats()
    assert stats["totalRequests"] == 2
    assert stats["totalTokens"] == 3000
    assert stats["totalCost"] == pytest.approx(0.002 + 0.00014)
    assert set(stats["byProvider"]) == {"openai", "openrouter"}
    assert stats["byModel"]["openai/gpt-3.5-turbo"]["requests"] == 1
    assert sum(b["requests"] for b in stats["byDay"].values()) == 2

    spending = await gov.current_month_spending()
    assert spending["limit"] == 100.0
    assert spending["remaining"] == pytest.approx(100.0 - stats["totalCost"])
    assert spending["daysRemaining"] >= 0
