"""JSearch API (RapidAPI): aggregated job listings."""
from __future__ import annotations

from job_aggregator.log import get_logger
from job_aggregator.models import RatePolicy, RawResponse
from job_aggregator.sources.base import SourceProvider, fetch_json

log = get_logger(__name__)


class JSearchSource(SourceProvider):
    BASE = "https://jsearch.p.rapidapi.com"
    source_id = "jsearch"
    policy = RatePolicy(max_requests=10, window_seconds=60.0, min_delay_seconds=1.0)

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    def query(self, keywords: list[str], location: str, limit: int = 20) -> RawResponse:
        query = " ".join(keywords)
        if location:
            query = f"{query} in {location}"
        data, latency_ms = fetch_json(
            self.source_id,
            f"{self.BASE}/search",
            params={"query": query, "num_pages": "1"},
            headers={
                "X-RapidAPI-Key": self.api_key,
                "X-RapidAPI-Host": "jsearch.p.rapidapi.com",
            },
        )
        records: list[dict] = []
        for hit in data.get("data", [])[:limit]:
            city = hit.get("job_city")
            region = hit.get("job_state") or hit.get("job_country") or ""
            records.append({
                "title": hit.get("job_title", ""),
                "company": hit.get("employer_name", ""),
                "location": ", ".join(p for p in (city, region) if p),
                "url": hit.get("job_apply_link", ""),
                "description": hit.get("job_description", ""),
                "posted_date": hit.get("job_posted_at_datetime_utc"),
            })
        log.debug("JSearch query=%r returned %d jobs", query, len(records))
        return RawResponse(source_id=self.source_id, records=records, latency_ms=latency_ms)
