"""Wire settings, providers, scheduler and cache into an orchestrator."""
from __future__ import annotations

from datetime import timedelta
from typing import Sequence

from job_aggregator.cache import SearchCache
from job_aggregator.config import Settings, get_env, load_settings
from job_aggregator.dedup import Deduplicator
from job_aggregator.log import get_logger
from job_aggregator.orchestrator import AggregationOrchestrator
from job_aggregator.scheduler import RequestScheduler
from job_aggregator.sources import SourceProvider, get_sources
from job_aggregator.store import CacheStore, FileStore, InMemoryStore

log = get_logger(__name__)


def build_store(settings: Settings) -> CacheStore:
    if settings.store == "file":
        return FileStore(settings.data_dir / "cache")
    if settings.store != "memory":
        log.warning("Unknown cache store %r, using in-memory store", settings.store)
    return InMemoryStore()


def build_orchestrator(
    settings: Settings | None = None,
    providers: Sequence[SourceProvider] | None = None,
) -> AggregationOrchestrator:
    settings = settings or load_settings()
    if providers is None:
        providers = get_sources(settings, get_env)

    scheduler = RequestScheduler(settings.default_policy, settings.source_policies)
    # Configured per-source limits override the provider's built-in policy.
    for provider in providers:
        if provider.source_id in settings.source_policies:
            provider.policy = settings.source_policies[provider.source_id]

    cache = SearchCache(
        build_store(settings),
        ttl=timedelta(days=settings.cache_ttl_days),
        deduplicator=Deduplicator(settings.similarity_threshold),
    )
    log.info("Aggregator ready with %d source(s): %s",
             len(providers), ", ".join(p.source_id for p in providers))
    return AggregationOrchestrator(
        providers,
        scheduler,
        cache,
        max_sources=settings.max_sources,
        deadline_seconds=settings.deadline_seconds,
        default_limit=settings.default_limit,
    )
