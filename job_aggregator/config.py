"""Load aggregator settings from YAML and the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from job_aggregator.log import get_logger
from job_aggregator.models import RatePolicy

log = get_logger(__name__)

load_dotenv()

ROOT_DIR: Path = Path(__file__).resolve().parent.parent
CONFIG_DIR: Path = ROOT_DIR / "config"
SETTINGS_PATH: Path = CONFIG_DIR / "aggregator.yaml"
DATA_DIR: Path = ROOT_DIR / "data"


@dataclass
class TextGenerationSettings:
    model: str = "sonar"
    base_url: str = "https://api.perplexity.ai"
    api_key_env: str = "TEXTGEN_API_KEY"
    cost_per_request: float = 0.005
    max_tokens: int = 2000


@dataclass
class Settings:
    max_sources: int = 5
    deadline_seconds: float = 60.0
    default_limit: int = 50
    cache_ttl_days: float = 21.0
    store: str = "memory"
    data_dir: Path = DATA_DIR
    similarity_threshold: float | None = None
    default_policy: RatePolicy = field(default_factory=RatePolicy)
    source_policies: dict[str, RatePolicy] = field(default_factory=dict)
    text_generation: TextGenerationSettings = field(default_factory=TextGenerationSettings)

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_days * 86400.0

    def policy_for(self, source_id: str) -> RatePolicy:
        return self.source_policies.get(source_id, self.default_policy)


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _policy(data: dict[str, Any] | None, base: RatePolicy) -> RatePolicy:
    """Overlay a YAML mapping on *base*; unknown keys are logged and ignored."""
    if not data:
        return base
    known = {f.name for f in fields(RatePolicy)}
    unknown = set(data) - known
    if unknown:
        log.warning("Ignoring unknown rate policy keys: %s", ", ".join(sorted(unknown)))
    values = {f.name: getattr(base, f.name) for f in fields(RatePolicy)}
    values.update({k: v for k, v in data.items() if k in known})
    return RatePolicy(**values)


def load_settings(path: Path | str | None = None) -> Settings:
    """Read settings from *path*, ``$AGGREGATOR_CONFIG`` or config/aggregator.yaml.

    A missing file yields the defaults.
    """
    target = Path(path or get_env("AGGREGATOR_CONFIG") or SETTINGS_PATH)
    if not target.exists():
        log.info("No settings file at %s, using defaults", target)
        return Settings()

    with open(target, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    default_policy = _policy(data.get("rate_limits", {}).get("default"), RatePolicy())
    source_policies = {
        name: _policy(cfg, default_policy)
        for name, cfg in (data.get("rate_limits", {}).get("sources") or {}).items()
    }

    textgen_cfg = data.get("text_generation") or {}
    textgen = TextGenerationSettings(
        **{k: v for k, v in textgen_cfg.items() if k in {f.name for f in fields(TextGenerationSettings)}}
    )

    cache_cfg = data.get("cache") or {}
    search_cfg = data.get("search") or {}
    threshold = (data.get("dedup") or {}).get("similarity_threshold")

    settings = Settings(
        max_sources=int(search_cfg.get("max_sources", 5)),
        deadline_seconds=float(search_cfg.get("deadline_seconds", 60.0)),
        default_limit=int(search_cfg.get("default_limit", 50)),
        cache_ttl_days=float(cache_cfg.get("ttl_days", 21.0)),
        store=str(cache_cfg.get("store", "memory")).lower(),
        data_dir=Path(cache_cfg.get("data_dir") or DATA_DIR),
        similarity_threshold=float(threshold) if threshold is not None else None,
        default_policy=default_policy,
        source_policies=source_policies,
        text_generation=textgen,
    )
    log.debug("Loaded settings from %s: %s", target, settings)
    return settings
