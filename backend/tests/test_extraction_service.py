# tests/test_extraction_service.py
import pytest

from conftest import FakeInferenceProvider, rental_reply

from rentmap.domain.types import Price
from rentmap.service_layer.cost_governor import CostGovernor
from rentmap.service_layer.extraction import ExtractionService, text_hash
from rentmap.service_layer.unit_of_work import SqlAlchemyUnitOfWork

POST = "Сдается 2-комнатная квартира в Ваке, 800 лари, мебель, балкон"


def _service(session_maker, providers, limit=100.0):
    gov = CostGovernor(session_maker, monthly_limit=limit)
    return ExtractionService(session_maker, gov, providers, cache_ttl_days=30)


async def test_empty_text_short_circuits(async_session_maker, fake_provider):
    svc = _service(async_session_maker, [fake_provider])
    r = await svc.analyze("   ")
    assert r.is_rental is False
    assert r.confidence == 0.0
    assert r.reasoning == "Empty or invalid text"
    assert fake_provider.calls == []


async def test_provider_result_is_costed_and_cached(async_session_maker, fake_provider):
    svc = _service(async_session_maker, [fake_provider])
    r = await svc.analyze(POST)

    assert r.is_rental is True
    assert r.confidence == 0.9
    assert r.fields.price == Price(amount=800.0, currency="GEL")
    assert r.provider == "fake"
    assert r.model == "gpt-3.5-turbo"
    # "fake" has no price table, so the default rate applies
    assert r.cost > 0

    again = await svc.analyze("  " + POST.upper() + " ")
    assert len(fake_provider.calls) == 1
    assert again.fields.price == r.fields.price
    assert again.cost == pytest.approx(r.cost)

    async with SqlAlchemyUnitOfWork(async_session_maker) as uow:
        entry = await uow.repos.extraction_cache.get_valid(text_hash(POST))
        assert entry is not None
        assert entry.provider == "fake"


async def test_falls_through_failing_provider(async_session_maker):
    broken = FakeInferenceProvider(name="openrouter", model="deepseek/deepseek-chat", fail=True)
    backup = FakeInferenceProvider(name="openai")
    svc = _service(async_session_maker, [broken, backup])

    r = await svc.analyze(POST)
    assert len(broken.calls) == 1
    assert len(backup.calls) == 1
    assert r.provider == "openai"

    stats = await svc.governor.usage_stats()
    # only completed calls are billed
    assert stats["totalRequests"] == 1
    assert set(stats["byProvider"]) == {"openai"}


async def test_all_providers_failing_uses_heuristics(async_session_maker):
    svc = _service(async_session_maker, [FakeInferenceProvider(fail=True)])
    r = await svc.analyze(POST)
    assert r.provider == "heuristic"
    assert r.is_rental is True
    assert r.confidence == 0.7
    assert r.cost == 0.0


async def test_over_limit_skips_paid_providers(async_session_maker, fake_provider):
    svc = _service(async_session_maker, [fake_provider], limit=1.0)
    await svc.governor.track_usage("openai", "gpt-4", 0, 0, cost=1.5)

    r = await svc.analyze(POST)
    assert fake_provider.calls == []
    assert r.provider == "heuristic"


async def test_unparseable_reply_keeps_cost(async_session_maker):
    provider = FakeInferenceProvider(replies=["I am not able to answer in JSON today."])
    svc = _service(async_session_maker, [provider])

    r = await svc.analyze(POST)
    assert r.provider == "heuristic"
    assert r.is_rental is True
    assert r.cost > 0
    assert (await svc.governor.usage_stats())["totalRequests"] == 1


async def test_batch_analyze_preserves_order(async_session_maker):
    provider = FakeInferenceProvider(
        replies=[rental_reply(), rental_reply(isRental=False, confidence=0.2, extractedData={})]
    )
    svc = _service(async_session_maker, [provider])
    results = await svc.batch_analyze(["", POST])
    assert len(results) == 2
    assert results[0].confidence == 0.0
    assert results[1].is_rental is True
