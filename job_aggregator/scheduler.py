"""Per-source rate limiting, retry with backoff, and bounded concurrency.

Every outbound provider call goes through :meth:`RequestScheduler.submit`.
Each source id owns a FIFO of waiting requests guarded by a condition
variable; a request leaves the queue only when it is at the head, the
source's rolling window has budget left, the minimum spacing since the last
dispatch has elapsed and fewer than ``max_concurrency`` calls are in flight.
Sources never wait on each other.

Deadlines are ``time.monotonic()`` timestamps.
"""
from __future__ import annotations

import random
import threading
import time
from collections import deque
from typing import Callable, Mapping, TypeVar

from job_aggregator.backoff import backoff_delay
from job_aggregator.errors import RateLimitExceeded, classify_error
from job_aggregator.log import get_logger
from job_aggregator.models import RateBudget, RatePolicy

log = get_logger(__name__)

T = TypeVar("T")


class _SourceQueue:
    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.waiting: deque[object] = deque()
        self.dispatched: deque[float] = deque()
        self.last_request_at: float | None = None
        self.in_flight = 0


class RequestScheduler:
    def __init__(
        self,
        default_policy: RatePolicy | None = None,
        policies: Mapping[str, RatePolicy] | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.default_policy = default_policy or RatePolicy()
        self._policies: dict[str, RatePolicy] = dict(policies or {})
        self._sources: dict[str, _SourceQueue] = {}
        self._lock = threading.Lock()
        self._sleep = sleep
        self._rng = rng

    def policy_for(self, source_id: str) -> RatePolicy:
        return self._policies.get(source_id, self.default_policy)

    def set_policy(self, source_id: str, policy: RatePolicy) -> None:
        self._policies[source_id] = policy

    def submit(
        self,
        source_id: str,
        request_fn: Callable[[], T],
        policy: RatePolicy | None = None,
        deadline: float | None = None,
    ) -> T:
        """Run *request_fn* under *source_id*'s rate budget and return its result.

        Transient failures are retried with exponential backoff (the retry goes
        back to the front of the source's queue). Raises the classified
        :class:`~job_aggregator.errors.ProviderError` once retries are spent or
        the failure is permanent, and :class:`RateLimitExceeded` when the
        deadline passes while waiting for budget.
        """
        policy = policy or self.policy_for(source_id)
        state = self._state(source_id)
        attempt = 0
        while True:
            try:
                return self._dispatch(source_id, state, request_fn, policy, deadline, front=attempt > 0)
            except RateLimitExceeded:
                raise
            except Exception as exc:
                err = classify_error(exc, source_id)
                if not err.transient:
                    log.warning("[%s] permanent failure, not retrying: %s", source_id, err)
                    self._reraise(err, exc)
                if attempt >= policy.max_retries:
                    log.error("[%s] failed after %d attempts: %s", source_id, attempt + 1, err)
                    self._reraise(err, exc)
                delay = backoff_delay(
                    attempt, base=policy.backoff_base, cap=policy.backoff_cap, rng=self._rng
                )
                if deadline is not None and time.monotonic() + delay >= deadline:
                    log.warning(
                        "[%s] attempt %d failed (%s); deadline leaves no room for a retry",
                        source_id, attempt + 1, err,
                    )
                    self._reraise(err, exc)
                log.warning(
                    "[%s] attempt %d/%d failed (%s), retrying in %.2fs",
                    source_id, attempt + 1, policy.max_retries + 1, err, delay,
                )
                self._sleep(delay)
                attempt += 1

    def budget(self, source_id: str) -> RateBudget:
        """Snapshot of *source_id*'s rate state."""
        state = self._state(source_id)
        policy = self.policy_for(source_id)
        with state.cond:
            self._prune(state, policy, time.monotonic())
            return RateBudget(
                request_count=len(state.dispatched),
                window_start=state.dispatched[0] if state.dispatched else None,
                last_request_at=state.last_request_at,
                pending=len(state.waiting),
                in_flight=state.in_flight,
            )

    def reset(self, source_id: str) -> None:
        """Forget all rate state for an idle source."""
        with self._lock:
            state = self._sources.get(source_id)
            if state is None:
                return
            with state.cond:
                if state.waiting or state.in_flight:
                    log.warning("[%s] not resetting: %d waiting, %d in flight",
                                source_id, len(state.waiting), state.in_flight)
                    return
                del self._sources[source_id]

    @staticmethod
    def _reraise(err: Exception, original: Exception) -> None:
        if err is original:
            raise original
        raise err from original

    def _state(self, source_id: str) -> _SourceQueue:
        with self._lock:
            state = self._sources.get(source_id)
            if state is None:
                state = self._sources[source_id] = _SourceQueue()
            return state

    def _dispatch(
        self,
        source_id: str,
        state: _SourceQueue,
        request_fn: Callable[[], T],
        policy: RatePolicy,
        deadline: float | None,
        *,
        front: bool,
    ) -> T:
        self._acquire(source_id, state, policy, deadline, front)
        try:
            return request_fn()
        finally:
            with state.cond:
                state.in_flight -= 1
                state.cond.notify_all()

    def _acquire(
        self,
        source_id: str,
        state: _SourceQueue,
        policy: RatePolicy,
        deadline: float | None,
        front: bool,
    ) -> None:
        ticket = object()
        with state.cond:
            if front:
                state.waiting.appendleft(ticket)
            else:
                state.waiting.append(ticket)
            announced = False
            try:
                while True:
                    now = time.monotonic()
                    wait: float | None = None
                    if state.waiting[0] is ticket:
                        wait = self._wait_time(state, policy, now)
                        if wait <= 0:
                            if state.in_flight < max(policy.max_concurrency, 1):
                                break
                            wait = None
                        elif not announced and len(state.dispatched) >= policy.max_requests:
                            log.debug("[%s] window budget spent, waiting %.2fs", source_id, wait)
                            announced = True
                    if deadline is not None:
                        remaining = deadline - now
                        if remaining <= 0:
                            raise RateLimitExceeded(
                                f"{source_id}: deadline passed while waiting for rate budget"
                            )
                        wait = remaining if wait is None else min(wait, remaining)
                    state.cond.wait(timeout=wait)
            except BaseException:
                try:
                    state.waiting.remove(ticket)
                except ValueError:
                    pass
                state.cond.notify_all()
                raise
            state.waiting.popleft()
            now = time.monotonic()
            state.dispatched.append(now)
            state.last_request_at = now
            state.in_flight += 1
            state.cond.notify_all()

    def _wait_time(self, state: _SourceQueue, policy: RatePolicy, now: float) -> float:
        self._prune(state, policy, now)
        window_wait = 0.0
        if policy.max_requests > 0 and len(state.dispatched) >= policy.max_requests:
            window_wait = state.dispatched[0] + policy.window_seconds - now
        spacing_wait = 0.0
        if state.last_request_at is not None:
            spacing_wait = state.last_request_at + policy.min_delay_seconds - now
        return max(window_wait, spacing_wait, 0.0)

    @staticmethod
    def _prune(state: _SourceQueue, policy: RatePolicy, now: float) -> None:
        while state.dispatched and state.dispatched[0] + policy.window_seconds <= now:
            state.dispatched.popleft()
