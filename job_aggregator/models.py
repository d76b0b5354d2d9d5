"""Data models for postings, cache entries and search results."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class JobPosting:
    fingerprint: str
    title: str
    company: str
    location: str
    description: str = ""
    salary: str | None = None
    urls: tuple[str, ...] = ()
    sources: tuple[str, ...] = ()
    posted_date: str | None = None
    confidence: float = 1.0

    @property
    def url(self) -> str:
        return self.urls[0] if self.urls else ""

    @property
    def source(self) -> str | list[str]:
        """The origin; a list once postings from several sources were merged."""
        if len(self.sources) == 1:
            return self.sources[0]
        return list(self.sources)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["urls"] = list(self.urls)
        data["sources"] = list(self.sources)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobPosting:
        return cls(
            fingerprint=data["fingerprint"],
            title=data.get("title", ""),
            company=data.get("company", ""),
            location=data.get("location", ""),
            description=data.get("description", ""),
            salary=data.get("salary"),
            urls=tuple(data.get("urls") or ()),
            sources=tuple(data.get("sources") or ()),
            posted_date=data.get("posted_date"),
            confidence=float(data.get("confidence", 1.0)),
        )


@dataclass
class ScoredPosting:
    posting: JobPosting
    score: float
    match_reasons: list[str] = field(default_factory=list)


@dataclass
class CacheEntry:
    signature: str
    jobs: list[JobPosting]
    search_count: int
    created_at: datetime
    last_searched_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "jobs": [j.to_dict() for j in self.jobs],
            "search_count": self.search_count,
            "created_at": self.created_at.isoformat(),
            "last_searched_at": self.last_searched_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        return cls(
            signature=data["signature"],
            jobs=[JobPosting.from_dict(j) for j in data.get("jobs", [])],
            search_count=int(data.get("search_count", 0)),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_searched_at=datetime.fromisoformat(data["last_searched_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


@dataclass(frozen=True)
class UserMarks:
    """One user's view of a cached job; never carries other users' ids."""

    viewed: bool = False
    applied: bool = False
    saved: bool = False
    view_count: int = 0


@dataclass(frozen=True)
class RatePolicy:
    max_requests: int = 10
    window_seconds: float = 60.0
    min_delay_seconds: float = 0.1
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_cap: float = 10.0
    max_concurrency: int = 4


@dataclass
class RateBudget:
    request_count: int = 0
    window_start: float | None = None
    last_request_at: float | None = None
    pending: int = 0
    in_flight: int = 0


@dataclass
class RawResponse:
    """What a provider hands back: validated records or free text."""

    source_id: str
    records: list[dict[str, Any]] | None = None
    text: str | None = None
    latency_ms: float = 0.0
    cost: float = 0.0

    @property
    def is_structured(self) -> bool:
        return self.records is not None


@dataclass
class SourceStatus:
    source_id: str
    failed: bool = False
    reason: str = ""
    error_kind: str = ""
    records: int = 0
    dropped: int = 0
    latency_ms: float = 0.0
    cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SearchState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    MERGING = "merging"
    CACHED = "cached"
    DONE = "done"
    FAILED = "failed"


@dataclass
class AggregationResult:
    jobs: list[JobPosting]
    per_source_status: dict[str, SourceStatus]
    cache_hit: bool
    signature: str = ""
    state: SearchState = SearchState.DONE
    cost: float = 0.0
    total_found: int = 0
    dropped_records: int = 0
    degraded: bool = False
    marks: dict[str, UserMarks] = field(default_factory=dict)

    @property
    def failed_sources(self) -> list[str]:
        return [sid for sid, st in self.per_source_status.items() if st.failed]

    def as_payload(self) -> dict[str, Any]:
        """Shape consumed by the web layer."""
        jobs = []
        for job in self.jobs:
            item = job.to_dict()
            item["url"] = job.url
            mark = self.marks.get(job.fingerprint)
            if mark is not None:
                item.update(asdict(mark))
            jobs.append(item)
        return {
            "jobs": jobs,
            "metadata": {
                "sources": sorted(self.per_source_status),
                "cache_hit": self.cache_hit,
                "per_source_status": {
                    sid: st.to_dict() for sid, st in self.per_source_status.items()
                },
                "cost": round(self.cost, 6),
                "total_found": self.total_found,
                "degraded": self.degraded,
            },
        }
