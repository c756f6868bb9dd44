# tests/conftest.py
import json

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from rentmap.adapters.clients.http_resilience import ProviderCooldown
from rentmap.container import build_services
from rentmap.domain.errors import ProviderError
from rentmap.domain.types import Completion, ProviderHit
from rentmap.models import Base
from rentmap.service_layer.pipeline.queue import RetryPolicy
from rentmap.service_layer.pipeline.stages import STAGE_EXTRACT, STAGE_SCRAPE


@pytest.fixture
async def engine():
    """
    Fresh in-memory DB per test. StaticPool makes all connections share the same
    in-memory database for the lifetime of this engine fixture.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest.fixture
async def file_session_maker(tmp_path):
    """
    On-disk DB for tests that run stage workers concurrently; each session
    gets its own connection and SQLite serializes the writers.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rentmap_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield async_sessionmaker(engine, expire_on_commit=False, autoflush=True)
    finally:
        await engine.dispose()


# -------------------------
# Fakes
# -------------------------


def rental_reply(**overrides) -> str:
    body = {
        "isRental": True,
        "confidence": 0.9,
        "extractedData": {
            "price": {"amount": 800, "currency": "GEL"},
            "rooms": 2,
            "area": 65,
            "district": "Vake",
            "address": None,
            "contactInfo": "+995 555 123 456",
            "amenities": ["balcony"],
            "petsAllowed": None,
            "furnished": True,
        },
        "language": "ru",
        "reasoning": "Offers an apartment for rent",
    }
    body.update(overrides)
    return "Here you go:\n```json\n" + json.dumps(body) + "\n```"


class FakeInferenceProvider:
    def __init__(self, name="fake", model="gpt-3.5-turbo", replies=None, fail=False):
        self.name = name
        self.model = model
        self.replies = list(replies or [rental_reply()])
        self.fail = fail
        self.calls = []

    async def complete(self, system_prompt, user_prompt):
        self.calls.append(user_prompt)
        if self.fail:
            raise ProviderError(self.name, "boom")
        content = self.replies[min(len(self.calls), len(self.replies)) - 1]
        return Completion(content=content, input_tokens=400, output_tokens=100, request_id=f"req-{len(self.calls)}")


class FakeGeocoder:
    def __init__(self, name="fakegeo", hit=None, fail=False, address=None):
        self.address = address
        self.reverse_queries = []
        self.name = name
        self.cooldown = ProviderCooldown(0)
        self.hit = hit
        self.fail = fail
        self.queries = []

    async def geocode(self, query, bounds):
        self.queries.append(query)
        if self.fail:
            raise ProviderError(self.name, "down")
        return self.hit

    async def reverse(self, latitude, longitude):
        self.reverse_queries.append((latitude, longitude))
        if self.fail:
            raise ProviderError(self.name, "down")
        return self.address


def vake_hit(**overrides) -> ProviderHit:
    fields = {
        "latitude": 41.7225,
        "longitude": 44.7701,
        "formatted_address": "12 Chavchavadze Ave, Tbilisi, Georgia",
        "confidence": 0.8,
        "location_type": "ROOFTOP",
        "components": {"suburb": "ვაკე"},
    }
    fields.update(overrides)
    return ProviderHit(**fields)


FAST_RETRIES = {
    STAGE_SCRAPE: RetryPolicy(3, 0.0),
    STAGE_EXTRACT: RetryPolicy(2, 0.0),
    "geocode": RetryPolicy(3, 0.0),
    "persist": RetryPolicy(2, 0.0, exponential=False),
}


@pytest.fixture
def fake_provider():
    return FakeInferenceProvider()


@pytest.fixture
def fake_geocoder():
    return FakeGeocoder(hit=vake_hit())


@pytest.fixture
def services(async_session_maker, fake_provider, fake_geocoder):
    return build_services(
        async_session_maker,
        inference_providers=[fake_provider],
        geocoders=[fake_geocoder],
        retry_policies=FAST_RETRIES,
    )
