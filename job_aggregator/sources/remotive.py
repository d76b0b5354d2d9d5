"""Remotive: free API for remote tech jobs (no API key required).

Docs: https://remotive.com/api/remote-jobs
"""
from __future__ import annotations

from job_aggregator.log import get_logger
from job_aggregator.models import RatePolicy, RawResponse
from job_aggregator.sources.base import SourceProvider, fetch_json

log = get_logger(__name__)

API_URL = "https://remotive.com/api/remote-jobs"

# Remotive asks for no more than a few requests per minute.
_POLICY = RatePolicy(max_requests=4, window_seconds=60.0, min_delay_seconds=2.0)

_GENERIC_WORDS = {"senior", "junior", "lead", "staff", "principal", "manager",
                  "engineer", "specialist", "consultant", "ii", "iii", "iv"}


def _search_term(keywords: list[str]) -> str:
    """Remotive works best with one short, distinctive term."""
    for kw in keywords:
        distinctive = [w for w in kw.lower().split() if w not in _GENERIC_WORDS]
        if distinctive:
            return distinctive[0]
    return keywords[0].split()[0] if keywords and keywords[0].split() else ""


class RemotiveSource(SourceProvider):
    source_id = "remotive"
    policy = _POLICY

    def query(self, keywords: list[str], location: str, limit: int = 20) -> RawResponse:
        params: dict = {"limit": limit}
        term = _search_term(keywords)
        if term:
            params["search"] = term

        data, latency_ms = fetch_json(self.source_id, API_URL, params=params)

        records: list[dict] = []
        for hit in data.get("jobs", []):
            desc = hit.get("description", "")
            tags = hit.get("tags", [])
            if tags:
                desc += " " + " ".join(tags)
            records.append({
                "title": hit.get("title", ""),
                "company": hit.get("company_name", ""),
                "location": hit.get("candidate_required_location") or "Remote",
                "url": hit.get("url", ""),
                "description": desc,
                "posted_date": hit.get("publication_date"),
                "salary": hit.get("salary") or None,
            })
        log.debug("Remotive search=%r returned %d jobs", term, len(records))
        return RawResponse(source_id=self.source_id, records=records[:limit], latency_ms=latency_ms)
