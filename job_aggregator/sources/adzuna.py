"""Adzuna job search, an aggregator with country-specific endpoints.

Free tier: 250 requests/day.  Sign up at https://developer.adzuna.com/
"""
from __future__ import annotations

from job_aggregator.log import get_logger
from job_aggregator.models import RatePolicy, RawResponse
from job_aggregator.sources.base import SourceProvider, fetch_json

log = get_logger(__name__)

BASE_URL = "https://api.adzuna.com/v1/api/jobs/{country}/search/1"

_COUNTRY_HINTS: dict[str, tuple[str, ...]] = {
    "us": ("usa", "united states", "new york", "san francisco"),
    "gb": ("uk", "united kingdom", "london"),
    "ca": ("canada", "toronto", "vancouver", "montreal"),
    "in": ("india", "bangalore", "bengaluru", "mumbai", "delhi"),
}


def _guess_country(location: str, default: str) -> str:
    loc = location.lower()
    for country, hints in _COUNTRY_HINTS.items():
        if any(h in loc for h in hints):
            return country
    return default


class AdzunaSource(SourceProvider):
    source_id = "adzuna"
    # 250/day is roughly one call every six minutes; allow short bursts.
    policy = RatePolicy(max_requests=5, window_seconds=60.0, min_delay_seconds=0.5)

    def __init__(self, app_id: str, app_key: str, country: str = "us") -> None:
        self.app_id = app_id
        self.app_key = app_key
        self.country = country

    def query(self, keywords: list[str], location: str, limit: int = 20) -> RawResponse:
        params: dict = {
            "app_id": self.app_id,
            "app_key": self.app_key,
            "what_or": " ".join(keywords),
            "results_per_page": min(limit, 50),
            "content-type": "application/json",
        }
        if location:
            params["where"] = location
        country = _guess_country(location, self.country)

        data, latency_ms = fetch_json(self.source_id, BASE_URL.format(country=country), params=params)

        records: list[dict] = []
        for hit in data.get("results", []):
            salary_text = ""
            sal_min = hit.get("salary_min")
            sal_max = hit.get("salary_max")
            if sal_min and sal_max:
                salary_text = f"{sal_min}-{sal_max}"
            elif sal_min:
                salary_text = str(sal_min)

            records.append({
                "title": hit.get("title", ""),
                "company": (hit.get("company") or {}).get("display_name", ""),
                "location": (hit.get("location") or {}).get("display_name", ""),
                "url": hit.get("redirect_url", ""),
                "description": hit.get("description", ""),
                "posted_date": hit.get("created"),
                "salary": salary_text or None,
            })
        log.debug("Adzuna country=%s returned %d jobs", country, len(records))
        return RawResponse(source_id=self.source_id, records=records[:limit], latency_ms=latency_ms)
