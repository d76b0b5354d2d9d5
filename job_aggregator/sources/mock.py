"""Offline job source for local runs and fallback when no API keys are set."""
from __future__ import annotations

from job_aggregator.log import get_logger
from job_aggregator.models import RawResponse
from job_aggregator.sources.base import SourceProvider

log = get_logger(__name__)


class MockSource(SourceProvider):
    source_id = "mock"

    def query(self, keywords: list[str], location: str, limit: int = 20) -> RawResponse:
        role = keywords[0].title() if keywords else "Software Engineer"
        where = location or "Remote"
        log.info("MockSource generating sample jobs")
        records = [
            {
                "title": f"Senior {role}",
                "company": "TechCorp Inc.",
                "location": where,
                "url": "https://example.com/job/1",
                "description": "Kubernetes, cloud, incident response. 8+ years.",
                "posted_date": "2 days ago",
            },
            {
                "title": f"{role} II",
                "company": "CloudScale SaaS",
                "location": where,
                "url": "https://example.com/job/2",
                "description": "Distributed systems, customer-facing escalations.",
                "posted_date": "1 week ago",
            },
            {
                "title": f"Lead {role}",
                "company": "Enterprise Platform Ltd",
                "location": where,
                "url": "https://example.com/job/3",
                "description": "Root cause analysis, SaaS platform ownership.",
                "salary": "$150,000 - $180,000",
                "posted_date": "3 days ago",
            },
        ]
        return RawResponse(source_id=self.source_id, records=records[:limit])
