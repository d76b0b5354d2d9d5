"""Job leads from an OpenAI-compatible text-generation endpoint.

The model is asked for a JSON array but its answer is treated as free text:
the orchestrator runs it through the structured extractor.
"""
from __future__ import annotations

import time

from job_aggregator.errors import classify_error
from job_aggregator.log import get_logger
from job_aggregator.models import RatePolicy, RawResponse
from job_aggregator.sources.base import SourceProvider

log = get_logger(__name__)

SYSTEM_PROMPT = "You are a job market research assistant. Return only valid JSON with no markdown."

PROMPT_TEMPLATE = """Find up to {limit} currently open job postings matching: {keywords}.
Location: {location}.

Return a JSON array. Each element must have these keys:
  "title", "company", "location", "description", "url", "salary", "posted_date", "confidence"
Use null for unknown values. "confidence" is your 0-1 certainty that the posting is real and open."""


class TextGenerationSource(SourceProvider):
    source_id = "textgen"
    policy = RatePolicy(max_requests=5, window_seconds=60.0, min_delay_seconds=1.0,
                        max_retries=2, backoff_base=1.0, backoff_cap=8.0)

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        *,
        cost_per_request: float = 0.0,
        max_tokens: int = 2000,
        timeout: float = 45.0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.cost_per_request = cost_per_request
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import OpenAI

            # Retries belong to the scheduler.
            self._client = OpenAI(
                api_key=self.api_key, base_url=self.base_url,
                max_retries=0, timeout=self.timeout,
            )
        return self._client

    def query(self, keywords: list[str], location: str, limit: int = 20) -> RawResponse:
        prompt = PROMPT_TEMPLATE.format(
            limit=limit,
            keywords=", ".join(keywords) or "any role",
            location=location or "anywhere",
        )
        started = time.monotonic()
        try:
            r = self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.2,
                max_tokens=self.max_tokens,
            )
        except Exception as exc:
            raise classify_error(exc, self.source_id) from exc
        latency_ms = (time.monotonic() - started) * 1000.0

        content = (r.choices[0].message.content or "") if r.choices else ""
        log.debug("Text generation returned %d chars in %.0fms", len(content), latency_ms)
        return RawResponse(
            source_id=self.source_id,
            text=content,
            latency_ms=latency_ms,
            cost=self.cost_per_request,
        )
