"""Error taxonomy and provider failure classification."""
from __future__ import annotations

from typing import Any

import requests

from job_aggregator.log import get_logger

log = get_logger(__name__)

# HTTP statuses that are worth retrying even though they are 4xx.
_RETRYABLE_4XX = {408, 425, 429}


class AggregatorError(Exception):
    """Root of every error raised by this package."""


class SchedulerError(AggregatorError):
    """Raised by RequestScheduler.submit when a request cannot be completed."""


class ProviderError(SchedulerError):
    def __init__(
        self,
        message: str,
        *,
        source_id: str = "",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.source_id = source_id
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return isinstance(self, TransientProviderError)


class TransientProviderError(ProviderError):
    """Network failure, timeout, 5xx or 429. Retried by the scheduler."""


class PermanentProviderError(ProviderError):
    """Bad request, auth failure, malformed payload. Never retried."""


class RateLimitExceeded(SchedulerError):
    """The deadline passed while a request was still waiting for rate budget."""


class DeadlineExceeded(SchedulerError):
    """The overall search deadline passed before the request finished."""


class ExtractionError(AggregatorError):
    """A single record could not be turned into a JobPosting."""


class CacheUnavailable(AggregatorError):
    """The persistent store behind SearchCache cannot be reached."""


class SearchFailed(AggregatorError):
    """Every queried source failed; carries the per-source status."""

    def __init__(self, message: str, per_source_status: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.per_source_status = per_source_status or {}


def _from_status(status: int, message: str, source_id: str) -> ProviderError:
    if status >= 500 or status in _RETRYABLE_4XX:
        return TransientProviderError(message, source_id=source_id, status_code=status)
    return PermanentProviderError(message, source_id=source_id, status_code=status)


def _classify_openai(exc: Exception, source_id: str) -> ProviderError | None:
    try:
        import openai
    except ImportError:
        return None

    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientProviderError(str(exc), source_id=source_id)
    if isinstance(exc, openai.APIStatusError):
        return _from_status(exc.status_code, str(exc), source_id)
    return None


def classify_error(exc: BaseException, source_id: str = "") -> ProviderError:
    """Map an arbitrary exception raised by a provider call onto the taxonomy."""
    if isinstance(exc, ProviderError):
        if not exc.source_id:
            exc.source_id = source_id
        return exc

    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return _from_status(exc.response.status_code, str(exc), source_id)
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return TransientProviderError(str(exc), source_id=source_id)

    classified = _classify_openai(exc, source_id) if isinstance(exc, Exception) else None
    if classified is not None:
        return classified

    # requests' MissingSchema / JSONDecodeError are both ValueError and OSError.
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return PermanentProviderError(f"malformed response: {exc}", source_id=source_id)
    if isinstance(exc, (TimeoutError, ConnectionError, OSError)):
        return TransientProviderError(str(exc) or type(exc).__name__, source_id=source_id)

    log.debug("Unclassified provider error from %s: %r", source_id, exc)
    return PermanentProviderError(str(exc) or type(exc).__name__, source_id=source_id)


def raise_for_status(response: requests.Response, source_id: str) -> None:
    """Like Response.raise_for_status, but raises the taxonomy's errors."""
    if response.status_code < 400:
        return
    detail = (response.text or "")[:200]
    raise _from_status(
        response.status_code,
        f"HTTP {response.status_code} from {source_id}: {detail}",
        source_id,
    )
