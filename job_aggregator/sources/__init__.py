from .base import SourceProvider, fetch_json
from .adzuna import AdzunaSource
from .jsearch import JSearchSource
from .mock import MockSource
from .remotive import RemotiveSource
from .text_generation import TextGenerationSource

from job_aggregator.log import get_logger

log = get_logger(__name__)

__all__ = [
    "SourceProvider", "fetch_json", "AdzunaSource", "JSearchSource",
    "MockSource", "RemotiveSource", "TextGenerationSource", "get_sources",
]


def get_sources(settings, env_getter) -> list[SourceProvider]:
    sources: list[SourceProvider] = []

    if env_getter("JSEARCH_API_KEY"):
        sources.append(JSearchSource(env_getter("JSEARCH_API_KEY")))
        log.info("Registered source: JSearch")

    if env_getter("ADZUNA_APP_ID") and env_getter("ADZUNA_APP_KEY"):
        sources.append(AdzunaSource(
            env_getter("ADZUNA_APP_ID"),
            env_getter("ADZUNA_APP_KEY"),
            country=env_getter("ADZUNA_COUNTRY", "us") or "us",
        ))
        log.info("Registered source: Adzuna")

    textgen = settings.text_generation
    if env_getter(textgen.api_key_env):
        sources.append(TextGenerationSource(
            env_getter(textgen.api_key_env),
            model=textgen.model,
            base_url=textgen.base_url,
            cost_per_request=textgen.cost_per_request,
            max_tokens=textgen.max_tokens,
        ))
        log.info("Registered source: text generation (%s)", textgen.model)

    # Remotive is free and keyless; opt out with DISABLE_REMOTIVE=1.
    if env_getter("DISABLE_REMOTIVE").lower() not in ("1", "true", "yes"):
        sources.append(RemotiveSource())
        log.info("Registered source: Remotive (free, remote jobs)")

    if not sources:
        sources.append(MockSource())
        log.info("No sources enabled, using MockSource")

    return sources
