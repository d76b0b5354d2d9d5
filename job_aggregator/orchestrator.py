"""
Search orchestration.

Runs: signature → cache → (miss) fan-out through the scheduler → extract →
deduplicate → cache → rank/limit.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Generic, Iterable, Mapping, Sequence, TypeVar

from job_aggregator.cache import SearchCache
from job_aggregator.dedup import Deduplicator
from job_aggregator.errors import (
    CacheUnavailable,
    DeadlineExceeded,
    ProviderError,
    RateLimitExceeded,
    SchedulerError,
    SearchFailed,
)
from job_aggregator.extractor import Failure, extract, to_postings
from job_aggregator.log import get_logger
from job_aggregator.models import (
    AggregationResult,
    JobPosting,
    RawResponse,
    SearchState,
    SourceStatus,
)
from job_aggregator.ranking import rank
from job_aggregator.scheduler import RequestScheduler
from job_aggregator.signature import SearchSignature
from job_aggregator.sources.base import SourceProvider

log = get_logger(__name__)

T = TypeVar("T")

# Default confidence by how the records were obtained.
STRUCTURED_CONFIDENCE = 1.0
PARSED_CONFIDENCE = 0.8
PARTIAL_CONFIDENCE = 0.5


class _Call(Generic[T]):
    def __init__(self) -> None:
        self.done = threading.Event()
        self.value: T | None = None
        self.error: BaseException | None = None


class SingleFlight(Generic[T]):
    """At most one in-flight call per key; concurrent callers share its outcome."""

    def __init__(self) -> None:
        self._calls: dict[str, _Call[T]] = {}
        self._lock = threading.Lock()

    def do(self, key: str, fn: Callable[[], T]) -> tuple[T, bool]:
        """Return ``(value, shared)``; *shared* is True for callers that waited."""
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = self._calls[key] = _Call()
        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.value, True  # type: ignore[return-value]
        try:
            call.value = fn()
            return call.value, False
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                del self._calls[key]
            call.done.set()


@dataclass
class _Fetched:
    postings: list[JobPosting] = field(default_factory=list)
    statuses: dict[str, SourceStatus] = field(default_factory=dict)
    cost: float = 0.0
    dropped: int = 0
    cached: bool = False
    cache_hit: bool = False


class AggregationOrchestrator:
    def __init__(
        self,
        providers: Sequence[SourceProvider],
        scheduler: RequestScheduler,
        cache: SearchCache,
        *,
        deduplicator: Deduplicator | None = None,
        max_sources: int = 5,
        deadline_seconds: float = 60.0,
        default_limit: int = 50,
    ) -> None:
        self.providers = list(providers)
        self.scheduler = scheduler
        self.cache = cache
        self.deduplicator = deduplicator or cache.deduplicator
        self.max_sources = max_sources
        self.deadline_seconds = deadline_seconds
        self.default_limit = default_limit
        self._flights: SingleFlight[_Fetched] = SingleFlight()

    def search(
        self,
        keywords: str | Iterable[str],
        location: str = "",
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
        user_id: str | None = None,
    ) -> AggregationResult:
        """Return ranked, deduplicated postings for the query.

        Raises SearchFailed only when every queried source failed.
        """
        limit = self.default_limit if limit is None else limit
        signature = SearchSignature.from_query(keywords, location, filters)
        state = SearchState.PENDING
        log.info("Search %s (limit=%d)", signature.key, limit)

        degraded = False
        try:
            entry = self.cache.get(signature)
        except CacheUnavailable as exc:
            log.warning("Cache unavailable, fetching directly without caching: %s", exc)
            entry, degraded = None, True

        if entry is None:
            fetched, shared = self._flights.do(
                signature.key, lambda: self._recheck_or_fetch(signature, location, degraded)
            )
            if shared:
                log.info("Joined in-flight fetch for %s", signature.key)
        else:
            fetched, shared = _Fetched(postings=entry.jobs, cached=True, cache_hit=True), False

        if fetched.cache_hit:
            result = self._result(signature, fetched.postings, {}, True, limit, location, user_id)
            result.total_found = len(fetched.postings)
            self._transition(signature, state, SearchState.DONE)
            return result

        # Each caller gets its own statuses; only the caller that fetched pays.
        statuses = {sid: replace(st) for sid, st in fetched.statuses.items()}
        result = self._result(
            signature, fetched.postings, statuses, False, limit, location, user_id,
        )
        result.cost = 0.0 if shared else fetched.cost
        result.dropped_records = fetched.dropped
        result.total_found = len(fetched.postings)
        result.degraded = degraded or not fetched.cached
        return result

    def _recheck_or_fetch(
        self, signature: SearchSignature, location: str, degraded: bool
    ) -> _Fetched:
        # A flight that finished between our miss and this call has filled the cache.
        if not degraded:
            try:
                entry = self.cache.get(signature)
            except CacheUnavailable as exc:
                log.warning("Cache unavailable on re-check for %s: %s", signature.key, exc)
                entry, degraded = None, True
            if entry is not None:
                log.info("Cache filled by a finished fetch for %s", signature.key)
                return _Fetched(postings=entry.jobs, cached=True, cache_hit=True)
        return self._fetch(signature, location, degraded)

    def _fetch(self, signature: SearchSignature, location: str, degraded: bool) -> _Fetched:
        deadline = time.monotonic() + self.deadline_seconds
        providers = self.providers[: self.max_sources]
        keywords = list(signature.keywords)
        if not providers:
            raise SearchFailed("no sources configured")

        state = self._transition(signature, SearchState.PENDING, SearchState.FETCHING)
        responses, statuses = self._fan_out(providers, keywords, location, deadline)

        state = self._transition(signature, state, SearchState.EXTRACTING)
        fetched = _Fetched(statuses=statuses)
        for provider in providers:
            status = statuses[provider.source_id]
            response = responses.get(provider.source_id)
            if response is None:
                continue
            fetched.cost += response.cost or provider.cost_per_request
            status.cost = response.cost or provider.cost_per_request
            postings = self._extract(response, status)
            fetched.postings.extend(postings)
            fetched.dropped += status.dropped

        ok = [sid for sid, st in statuses.items() if not st.failed]
        if not ok:
            self._transition(signature, state, SearchState.FAILED)
            reasons = "; ".join(f"{sid}: {st.reason}" for sid, st in statuses.items())
            raise SearchFailed(f"all {len(statuses)} sources failed ({reasons})", statuses)

        state = self._transition(signature, state, SearchState.MERGING)
        fetched.postings = self.deduplicator.merge(fetched.postings)

        if fetched.postings and not degraded:
            try:
                self.cache.put(signature, fetched.postings)
                fetched.cached = True
                state = self._transition(signature, state, SearchState.CACHED)
            except CacheUnavailable as exc:
                log.warning("Could not cache results for %s: %s", signature.key, exc)
        elif not fetched.postings:
            fetched.cached = True  # nothing to store is not a degradation
            log.info("No postings for %s; not caching", signature.key)

        failed = [sid for sid, st in statuses.items() if st.failed]
        log.info(
            "Fetched %s: %d unique postings from %d/%d sources%s",
            signature.key, len(fetched.postings), len(ok), len(statuses),
            f" (failed: {', '.join(failed)})" if failed else "",
        )
        self._transition(signature, state, SearchState.DONE)
        return fetched

    def _fan_out(
        self,
        providers: list[SourceProvider],
        keywords: list[str],
        location: str,
        deadline: float,
    ) -> tuple[dict[str, RawResponse], dict[str, SourceStatus]]:
        statuses = {p.source_id: SourceStatus(source_id=p.source_id) for p in providers}
        responses: dict[str, RawResponse] = {}

        log.info("Querying %d source(s) in parallel...", len(providers))
        pool = ThreadPoolExecutor(max_workers=len(providers), thread_name_prefix="source")
        futures: dict[Future, SourceProvider] = {
            pool.submit(self._query_source, p, keywords, location, deadline): p
            for p in providers
        }
        try:
            done, pending = wait(futures, timeout=max(deadline - time.monotonic(), 0.0))
            for future in done:
                provider = futures[future]
                status = statuses[provider.source_id]
                try:
                    responses[provider.source_id] = future.result()
                except ProviderError as exc:
                    status.failed = True
                    status.error_kind = "transient" if exc.transient else "permanent"
                    status.reason = str(exc) or type(exc).__name__
                    log.warning("[%s] FAILED (%s): %s", provider.source_id, status.error_kind, exc)
                except RateLimitExceeded as exc:
                    status.failed, status.error_kind, status.reason = True, "rate_limited", str(exc)
                    log.warning("[%s] rate limited past deadline", provider.source_id)
                except SchedulerError as exc:
                    status.failed, status.error_kind, status.reason = True, "timeout", str(exc)
                    log.warning("[%s] %s", provider.source_id, exc)
            for future in pending:
                provider = futures[future]
                future.cancel()
                status = statuses[provider.source_id]
                status.failed, status.error_kind = True, "timeout"
                status.reason = f"no response within {self.deadline_seconds:.0f}s"
                log.warning("[%s] timed out", provider.source_id)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return responses, statuses

    def _query_source(
        self,
        provider: SourceProvider,
        keywords: list[str],
        location: str,
        deadline: float,
    ) -> RawResponse:
        started = time.monotonic()
        if started >= deadline:
            raise DeadlineExceeded(f"{provider.source_id}: search deadline passed before dispatch")
        response = self.scheduler.submit(
            provider.source_id,
            lambda: provider.query(keywords, location, limit=self.default_limit),
            policy=provider.policy,
            deadline=deadline,
        )
        if not response.latency_ms:
            response.latency_ms = (time.monotonic() - started) * 1000.0
        return response

    def _extract(self, response: RawResponse, status: SourceStatus) -> list[JobPosting]:
        status.latency_ms = response.latency_ms
        if response.is_structured:
            postings, dropped = to_postings(response.records, status.source_id, STRUCTURED_CONFIDENCE)
        else:
            outcome = extract(response.text or "")
            if isinstance(outcome, Failure):
                status.failed, status.error_kind = True, "extraction"
                status.reason = outcome.error
                log.warning("[%s] extraction failed after %s: %s",
                            status.source_id, ", ".join(outcome.steps), outcome.error)
                return []
            log.debug("[%s] extracted via %s", status.source_id, ", ".join(outcome.steps))
            confidence = PARTIAL_CONFIDENCE if outcome.partial else PARSED_CONFIDENCE
            postings, dropped = to_postings(outcome.data, status.source_id, confidence)
        status.records = len(postings)
        status.dropped = dropped
        log.info("[%s] returned %d jobs", status.source_id, len(postings))
        return postings

    def _result(
        self,
        signature: SearchSignature,
        postings: list[JobPosting],
        statuses: dict[str, SourceStatus],
        cache_hit: bool,
        limit: int,
        location: str,
        user_id: str | None,
    ) -> AggregationResult:
        ranked = [s.posting for s in rank(postings, signature.keywords, location, limit)]
        marks = {}
        if user_id:
            try:
                marks = self.cache.user_marks(signature, user_id)
            except CacheUnavailable as exc:
                log.warning("Interaction marks unavailable: %s", exc)
        return AggregationResult(
            jobs=ranked,
            per_source_status=statuses,
            cache_hit=cache_hit,
            signature=signature.key,
            state=SearchState.DONE,
            marks={j.fingerprint: marks[j.fingerprint] for j in ranked if j.fingerprint in marks},
        )

    @staticmethod
    def _transition(signature: SearchSignature, old: SearchState, new: SearchState) -> SearchState:
        log.debug("%s: %s → %s", signature.key, old.value, new.value)
        return new
