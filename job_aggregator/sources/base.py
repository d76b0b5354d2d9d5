from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

import requests

from job_aggregator.errors import PermanentProviderError, TransientProviderError, raise_for_status
from job_aggregator.models import RatePolicy, RawResponse

DEFAULT_TIMEOUT = 15


class SourceProvider(ABC):
    """A job-data origin. Only ever called through RequestScheduler.submit."""

    source_id: str = "unknown"
    cost_per_request: float = 0.0
    policy: RatePolicy | None = None

    @abstractmethod
    def query(self, keywords: list[str], location: str, limit: int = 20) -> RawResponse:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.source_id}>"


def fetch_json(
    source_id: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    session: requests.Session | None = None,
) -> tuple[Any, float]:
    """GET *url* and decode JSON; returns ``(payload, latency_ms)``.

    Failures surface as Transient/PermanentProviderError.
    """
    started = time.monotonic()
    getter = session.get if session is not None else requests.get
    try:
        r = getter(url, params=params, headers=headers, timeout=timeout)
    except (requests.Timeout, requests.ConnectionError) as exc:
        raise TransientProviderError(f"{source_id}: {exc}", source_id=source_id) from exc
    latency_ms = (time.monotonic() - started) * 1000.0
    raise_for_status(r, source_id)
    try:
        return r.json(), latency_ms
    except ValueError as exc:
        raise PermanentProviderError(
            f"{source_id}: response is not JSON", source_id=source_id, status_code=r.status_code
        ) from exc
