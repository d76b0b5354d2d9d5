import os

os.environ.setdefault("AGGREGATOR_LOG_FILE", "0")

import pytest

from job_aggregator.dedup import fingerprint
from job_aggregator.models import JobPosting


@pytest.fixture
def make_posting():
    """Build a JobPosting whose fingerprint matches its title/company/location."""
    def _make(title="Python Developer", company="Acme", location="Toronto", *,
              description="", source="a", url=None, **kwargs):
        return JobPosting(
            fingerprint=fingerprint(title, company, location),
            title=title,
            company=company,
            location=location,
            description=description,
            urls=(url,) if url else (),
            sources=(source,),
            **kwargs,
        )
    return _make
