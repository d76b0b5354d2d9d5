"""Fingerprint-based identification and merging of equivalent postings."""
from __future__ import annotations

import hashlib
import re
from dataclasses import replace
from typing import Iterable

from job_aggregator.log import get_logger
from job_aggregator.models import JobPosting

log = get_logger(__name__)

SENIORITY_WORDS: frozenset[str] = frozenset({
    "senior", "sr", "junior", "jr", "lead", "staff", "principal",
})

LEGAL_SUFFIXES: frozenset[str] = frozenset({
    "inc", "incorporated", "ltd", "llc", "llp", "corp", "corporation",
    "co", "company", "limited", "plc", "gmbh",
})

_NON_ALNUM = re.compile(r"[^a-z0-9\s]+")


def _tokens(text: str | None) -> list[str]:
    return _NON_ALNUM.sub(" ", (text or "").lower()).split()


def normalize_title(title: str | None) -> str:
    return " ".join(t for t in _tokens(title) if t not in SENIORITY_WORDS)


def normalize_company(company: str | None) -> str:
    return " ".join(t for t in _tokens(company) if t not in LEGAL_SUFFIXES)


def normalize_location(location: str | None) -> str:
    return " ".join(_tokens(location))


def fingerprint(title: str | None, company: str | None, location: str | None) -> str:
    key = "|".join((normalize_title(title), normalize_company(company), normalize_location(location)))
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def description_similarity(a: str, b: str) -> float:
    """Jaccard similarity over words longer than two characters."""
    words_a = {w for w in _tokens(a) if len(w) > 2}
    words_b = {w for w in _tokens(b) if len(w) > 2}
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def _richer(a: str, b: str) -> str:
    """Longer wins; equal lengths fall back to lexicographic order."""
    return max(a, b, key=lambda s: (len(s), s))


def _optional(a: str | None, b: str | None) -> str | None:
    if not a or not b:
        return a or b or None
    return _richer(a, b)


def merge_pair(a: JobPosting, b: JobPosting) -> JobPosting:
    """Merge two postings for the same job.

    Every field rule is a symmetric total-order max or a set union, so the
    result does not depend on argument order or grouping.
    """
    return JobPosting(
        fingerprint=a.fingerprint,
        title=_richer(a.title, b.title),
        company=_richer(a.company, b.company),
        location=_richer(a.location, b.location),
        description=_richer(a.description, b.description),
        salary=_optional(a.salary, b.salary),
        urls=tuple(sorted(set(a.urls) | set(b.urls))),
        sources=tuple(sorted(set(a.sources) | set(b.sources))),
        posted_date=max((d for d in (a.posted_date, b.posted_date) if d), default=None),
        confidence=max(a.confidence, b.confidence),
    )


def _canonical(posting: JobPosting) -> tuple:
    return (
        posting.description, posting.title, posting.company, posting.location,
        posting.salary or "", posting.urls, posting.sources,
        posting.posted_date or "", posting.confidence,
    )


class Deduplicator:
    """Collapse postings that share a fingerprint.

    ``similarity_threshold`` is an optional guard: when set, postings with the
    same fingerprint but description similarity below the threshold are kept
    apart (split-off groups get a description-qualified fingerprint).
    """

    def __init__(self, similarity_threshold: float | None = None) -> None:
        self.similarity_threshold = similarity_threshold

    def merge(self, postings: Iterable[JobPosting]) -> list[JobPosting]:
        groups: dict[str, list[JobPosting]] = {}
        total = 0
        for posting in postings:
            total += 1
            groups.setdefault(posting.fingerprint, []).append(posting)

        merged: list[JobPosting] = []
        for group in groups.values():
            if self.similarity_threshold is None:
                result = group[0]
                for other in group[1:]:
                    result = merge_pair(result, other)
                merged.append(result)
            else:
                merged.extend(self._merge_similar(group))

        if self.similarity_threshold is not None:
            # Re-merging already split postings can reproduce a split-off id.
            collapsed: dict[str, JobPosting] = {}
            for posting in merged:
                prior = collapsed.get(posting.fingerprint)
                collapsed[posting.fingerprint] = posting if prior is None else merge_pair(prior, posting)
            merged = list(collapsed.values())

        if total != len(merged):
            log.info("Deduplicated %d postings → %d unique", total, len(merged))
        return merged

    def _merge_similar(self, group: list[JobPosting]) -> list[JobPosting]:
        clusters: list[JobPosting] = []
        for posting in sorted(group, key=_canonical):
            for i, existing in enumerate(clusters):
                if (
                    not posting.description
                    or not existing.description
                    or description_similarity(posting.description, existing.description)
                    >= self.similarity_threshold
                ):
                    clusters[i] = merge_pair(existing, posting)
                    break
            else:
                clusters.append(posting)

        if len(clusters) == 1:
            return clusters
        log.debug("Fingerprint %s split into %d distinct roles", group[0].fingerprint, len(clusters))
        out = [clusters[0]]
        for cluster in clusters[1:]:
            suffix = hashlib.sha256(cluster.description.encode("utf-8")).hexdigest()[:6]
            out.append(replace(cluster, fingerprint=f"{cluster.fingerprint}-{suffix}"))
        return out


def group_by_company(postings: Iterable[JobPosting]) -> dict[str, list[JobPosting]]:
    grouped: dict[str, list[JobPosting]] = {}
    for posting in postings:
        grouped.setdefault(normalize_company(posting.company), []).append(posting)
    return grouped
