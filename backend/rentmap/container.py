# rentmap/container.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .adapters.clients.geocoders import GeocodeProvider, build_geocoders_from_settings
from .adapters.clients.inference import InferenceProvider, build_providers_from_settings
from .adapters.ingestion.base import ChannelSource
from .adapters.ingestion.stub_json import StubJsonChannelSource
from .config import settings
from .integrations.realtime import RealtimeHub
from .service_layer.clustering import ClusteringEngine
from .service_layer.cost_governor import CostGovernor
from .service_layer.extraction import ExtractionService
from .service_layer.geocoding import GeocodeResolver
from .service_layer.pipeline.coordinator import PipelineCoordinator
from .service_layer.pipeline.queue import RetryPolicy
from .service_layer.pipeline.stages import PipelineStages
from .service_layer.subscriptions import SubscriptionRegistry


@dataclass
class Services:
    session_maker: async_sessionmaker[AsyncSession]
    governor: CostGovernor
    extraction: ExtractionService
    geocoder: GeocodeResolver
    clustering: ClusteringEngine
    subscriptions: SubscriptionRegistry
    hub: RealtimeHub
    pipeline: PipelineCoordinator
    channel_source: ChannelSource


def build_services(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    *,
    inference_providers: Sequence[InferenceProvider] | None = None,
    geocoders: Sequence[GeocodeProvider] | None = None,
    channel_source: ChannelSource | None = None,
    retry_policies: dict[str, RetryPolicy] | None = None,
) -> Services:
    """
    Wire every component. Tests pass their own session maker and fake providers;
    anything left as None comes from settings.
    """
    if session_maker is None:
        from .db import AsyncSessionLocal

        session_maker = AsyncSessionLocal

    governor = CostGovernor.from_settings(session_maker)
    extraction = ExtractionService.from_settings(
        session_maker,
        governor,
        build_providers_from_settings() if inference_providers is None else inference_providers,
    )
    geocoder = GeocodeResolver.from_settings(
        session_maker,
        build_geocoders_from_settings() if geocoders is None else geocoders,
    )

    subscriptions = SubscriptionRegistry.from_settings()
    hub = RealtimeHub.from_settings(subscriptions)

    stages = PipelineStages(
        session_maker,
        extraction,
        geocoder,
        min_text_length=settings.MIN_POST_TEXT_LENGTH,
        publish_threshold=settings.PUBLISH_CONFIDENCE_THRESHOLD,
    )
    pipeline = PipelineCoordinator(stages, policies=retry_policies)
    pipeline.add_listing_listener(hub.broadcast_new_listing)

    return Services(
        session_maker=session_maker,
        governor=governor,
        extraction=extraction,
        geocoder=geocoder,
        clustering=ClusteringEngine.from_settings(),
        subscriptions=subscriptions,
        hub=hub,
        pipeline=pipeline,
        channel_source=channel_source or StubJsonChannelSource.from_settings(),
    )
