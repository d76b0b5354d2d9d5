"""TTL-bounded search cache shared across users.

Entries are keyed by :class:`SearchSignature`. Reads past ``expires_at``
behave as misses and delete the entry; :meth:`SearchCache.purge_expired`
does the same in bulk and nothing depends on when it runs.
"""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from job_aggregator.dedup import Deduplicator
from job_aggregator.log import get_logger
from job_aggregator.models import CacheEntry, JobPosting, UserMarks
from job_aggregator.signature import SearchSignature
from job_aggregator.store import CacheStore, InMemoryStore

log = get_logger(__name__)

DEFAULT_TTL = timedelta(weeks=3)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SearchCache:
    def __init__(
        self,
        store: CacheStore | None = None,
        *,
        ttl: timedelta = DEFAULT_TTL,
        deduplicator: Deduplicator | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store or InMemoryStore()
        self.ttl = ttl
        self.deduplicator = deduplicator or Deduplicator()
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, signature: SearchSignature) -> CacheEntry | None:
        """Live entry for *signature*, counting the hit; ``None`` on miss."""
        with self._lock:
            entry = self._load(signature.key)
            if entry is None:
                return None
            now = self._clock()
            entry.search_count += 1
            entry.last_searched_at = now
            self._save(entry)
        log.info("Cache hit for %s: %d jobs (searched %d times)",
                 signature.key, len(entry.jobs), entry.search_count)
        return entry

    def put(
        self,
        signature: SearchSignature,
        jobs: Iterable[JobPosting],
        ttl: timedelta | None = None,
    ) -> CacheEntry:
        """Store *jobs*, merging into a live entry when one exists."""
        ttl = self.ttl if ttl is None else ttl
        jobs = list(jobs)
        with self._lock:
            now = self._clock()
            entry = self._load(signature.key)
            if entry is None:
                entry = CacheEntry(
                    signature=signature.key,
                    jobs=self.deduplicator.merge(jobs),
                    search_count=1,
                    created_at=now,
                    last_searched_at=now,
                    expires_at=now + ttl,
                )
                log.info("Cached %d jobs for %s", len(entry.jobs), signature.key)
            else:
                before = len(entry.jobs)
                entry.jobs = self.deduplicator.merge(entry.jobs + jobs)
                entry.search_count += 1
                entry.last_searched_at = now
                entry.expires_at = now + ttl
                log.info("Refreshed %s: %d → %d jobs", signature.key, before, len(entry.jobs))
            self._save(entry)
        return entry

    def invalidate(self, signature: SearchSignature) -> None:
        self.store.delete(signature.key)

    def mark_viewed(self, signature: SearchSignature, job_id: str, user_id: str) -> None:
        self.store.add_mark(signature.key, job_id, "viewed", user_id)
        log.debug("Marked %s viewed by %s", job_id, user_id)

    def mark_applied(self, signature: SearchSignature, job_id: str, user_id: str) -> None:
        self.store.add_mark(signature.key, job_id, "applied", user_id)
        self.store.add_mark(signature.key, job_id, "viewed", user_id)
        log.debug("Marked %s applied by %s", job_id, user_id)

    def mark_saved(
        self,
        signature: SearchSignature,
        job_id: str,
        user_id: str,
        saved: bool = True,
    ) -> None:
        if saved:
            self.store.add_mark(signature.key, job_id, "saved", user_id)
            self.store.add_mark(signature.key, job_id, "viewed", user_id)
        else:
            self.store.remove_mark(signature.key, job_id, "saved", user_id)
        log.debug("Marked %s %s by %s", job_id, "saved" if saved else "unsaved", user_id)

    def user_marks(self, signature: SearchSignature, user_id: str) -> dict[str, UserMarks]:
        """Marks for *user_id* only, plus how many users viewed each job."""
        marks = self.store.get_marks(signature.key)
        return {
            job_id: UserMarks(
                viewed=user_id in kinds.get("viewed", ()),
                applied=user_id in kinds.get("applied", ()),
                saved=user_id in kinds.get("saved", ()),
                view_count=len(kinds.get("viewed", ())),
            )
            for job_id, kinds in marks.items()
        }

    def purge_expired(self) -> int:
        removed = 0
        with self._lock:
            for key in self.store.keys():
                raw = self.store.get(key)
                if raw is None:
                    continue
                if CacheEntry.from_dict(raw).is_expired(self._clock()):
                    self.store.delete(key)
                    removed += 1
        if removed:
            log.info("Purged %d expired cache entries", removed)
        return removed

    def stats(self) -> dict[str, object]:
        now = self._clock()
        entries = []
        for key in self.store.keys():
            raw = self.store.get(key)
            if raw is None:
                continue
            entry = CacheEntry.from_dict(raw)
            if not entry.is_expired(now):
                entries.append(entry)
        total_jobs = sum(len(e.jobs) for e in entries)
        return {
            "total_caches": len(entries),
            "total_jobs": total_jobs,
            "average_jobs_per_cache": round(total_jobs / len(entries)) if entries else 0,
            "oldest_cache": min((e.created_at for e in entries), default=None),
            "newest_cache": max((e.created_at for e in entries), default=None),
        }

    def _load(self, key: str) -> CacheEntry | None:
        raw = self.store.get(key)
        if raw is None:
            return None
        entry = CacheEntry.from_dict(raw)
        if entry.is_expired(self._clock()):
            log.debug("Cache entry %s expired at %s", key, entry.expires_at.isoformat())
            self.store.delete(key)
            return None
        return entry

    def _save(self, entry: CacheEntry) -> None:
        remaining = (entry.expires_at - self._clock()).total_seconds()
        self.store.put(entry.signature, entry.to_dict(), max(remaining, 1.0))
