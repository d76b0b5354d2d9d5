"""
Unit tests for the per-source request scheduler.
"""
import random
import threading
import time

import pytest
import requests

from job_aggregator.backoff import backoff_delay
from job_aggregator.errors import PermanentProviderError, RateLimitExceeded, TransientProviderError
from job_aggregator.models import RatePolicy
from job_aggregator.scheduler import RequestScheduler

EPS = 0.02


def _run_threads(n, target):
    threads = [threading.Thread(target=target) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)


def test_window_and_spacing_are_respected():
    """At most max_requests dispatches in any window, spaced by min_delay."""
    policy = RatePolicy(max_requests=2, window_seconds=1.0, min_delay_seconds=0.05, max_concurrency=5)
    scheduler = RequestScheduler(policy)
    stamps, lock = [], threading.Lock()

    def request():
        with lock:
            stamps.append(time.monotonic())
        return "ok"

    results = []
    _run_threads(5, lambda: results.append(scheduler.submit("src", request)))

    assert results == ["ok"] * 5
    stamps.sort()
    for earlier, later in zip(stamps, stamps[1:]):
        assert later - earlier >= 0.05 - EPS
    for earlier, later in zip(stamps, stamps[2:]):
        assert later - earlier >= 1.0 - EPS


def test_budget_snapshot():
    scheduler = RequestScheduler(RatePolicy(min_delay_seconds=0))
    scheduler.submit("src", lambda: 1)
    scheduler.submit("src", lambda: 2)
    budget = scheduler.budget("src")
    assert budget.request_count == 2
    assert budget.in_flight == 0
    assert budget.pending == 0
    scheduler.reset("src")
    assert scheduler.budget("src").request_count == 0


def test_transient_failures_are_retried():
    sleeps = []
    scheduler = RequestScheduler(RatePolicy(min_delay_seconds=0, max_retries=3), sleep=sleeps.append)
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientProviderError("503 from upstream")
        return "ok"

    assert scheduler.submit("src", flaky) == "ok"
    assert len(calls) == 3
    assert len(sleeps) == 2
    assert sleeps[1] > sleeps[0] * 1.1


def test_permanent_failure_is_not_retried():
    sleeps = []
    scheduler = RequestScheduler(RatePolicy(min_delay_seconds=0), sleep=sleeps.append)
    calls = []

    def bad_auth():
        calls.append(1)
        raise PermanentProviderError("401 invalid key")

    with pytest.raises(PermanentProviderError):
        scheduler.submit("src", bad_auth)
    assert len(calls) == 1
    assert sleeps == []


def test_library_errors_are_classified_and_retries_exhausted():
    scheduler = RequestScheduler(RatePolicy(min_delay_seconds=0, max_retries=2), sleep=lambda s: None)
    calls = []

    def down():
        calls.append(1)
        raise requests.ConnectionError("connection refused")

    with pytest.raises(TransientProviderError) as excinfo:
        scheduler.submit("src", down)
    assert len(calls) == 3
    assert excinfo.value.source_id == "src"


def test_deadline_while_waiting_raises_rate_limit_exceeded():
    scheduler = RequestScheduler(RatePolicy(max_requests=1, window_seconds=10, min_delay_seconds=0))
    scheduler.submit("src", lambda: "first")
    calls = []
    started = time.monotonic()
    with pytest.raises(RateLimitExceeded):
        scheduler.submit("src", lambda: calls.append(1), deadline=time.monotonic() + 0.1)
    assert time.monotonic() - started < 2
    assert calls == []
    assert scheduler.budget("src").pending == 0


def test_no_retry_when_backoff_would_pass_deadline():
    sleeps = []
    scheduler = RequestScheduler(RatePolicy(min_delay_seconds=0, backoff_base=5.0), sleep=sleeps.append)

    def timeout():
        raise TimeoutError("read timed out")

    with pytest.raises(TransientProviderError):
        scheduler.submit("src", timeout, deadline=time.monotonic() + 0.5)
    assert sleeps == []


def test_max_concurrency():
    scheduler = RequestScheduler(RatePolicy(max_requests=100, min_delay_seconds=0, max_concurrency=1))
    active, peak, lock = [0], [0], threading.Lock()

    def request():
        with lock:
            active[0] += 1
            peak[0] = max(peak[0], active[0])
        time.sleep(0.05)
        with lock:
            active[0] -= 1

    _run_threads(3, lambda: scheduler.submit("src", request))
    assert peak[0] == 1


def test_sources_do_not_block_each_other():
    scheduler = RequestScheduler(RatePolicy(max_requests=1, window_seconds=10, min_delay_seconds=0))
    scheduler.submit("slow", lambda: None)
    errors = []

    def blocked():
        try:
            scheduler.submit("slow", lambda: None, deadline=time.monotonic() + 1.0)
        except RateLimitExceeded as exc:
            errors.append(exc)

    waiter = threading.Thread(target=blocked)
    waiter.start()
    time.sleep(0.05)
    started = time.monotonic()
    assert scheduler.submit("fast", lambda: "done") == "done"
    assert time.monotonic() - started < 0.5
    waiter.join(timeout=5)
    assert len(errors) == 1


def test_per_source_policy_override():
    scheduler = RequestScheduler(RatePolicy(), {"textgen": RatePolicy(max_requests=1)})
    assert scheduler.policy_for("textgen").max_requests == 1
    assert scheduler.policy_for("other") == RatePolicy()
    scheduler.set_policy("other", RatePolicy(max_concurrency=1))
    assert scheduler.policy_for("other").max_concurrency == 1


def test_backoff_delay_grows_and_caps():
    delays = [backoff_delay(n, base=1.0, cap=10.0, jitter=0) for n in range(6)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


def test_backoff_jitter_bounds():
    rng = random.Random(7)
    for _ in range(50):
        delay = backoff_delay(2, base=1.0, cap=10.0, jitter=0.25, rng=rng)
        assert 3.0 <= delay <= 5.0
