"""Score merged postings against the search and apply the result limit."""
from __future__ import annotations

from typing import Sequence

from job_aggregator.log import get_logger
from job_aggregator.models import JobPosting, ScoredPosting

log = get_logger(__name__)


def _normalize(s: str | None) -> str:
    return " ".join((s or "").lower().split())


LOCATION_ALIASES: dict[str, list[str]] = {
    "bangalore": ["bangalore", "bengaluru"],
    "gurgaon": ["gurgaon", "gurugram"],
    "new york": ["new york", "nyc", "new york city"],
    "san francisco": ["san francisco", "sf", "bay area"],
    "toronto": ["toronto", "gta"],
    "remote": ["remote", "anywhere", "work from home", "wfh"],
}


def _expand_location(location: str) -> list[str]:
    key = _normalize(location)
    if not key:
        return []
    for canonical, aliases in LOCATION_ALIASES.items():
        if key == canonical or key in aliases:
            return aliases
    # "Toronto, ON" should still match "Toronto".
    head = key.split(",")[0].strip()
    return list(dict.fromkeys([key, head]))


def _word_overlap_ratio(keyword: str, text: str) -> float:
    """Fraction of words in *keyword* that appear in *text*.

    Multi-word keywords need at least 2 overlapping words to count.
    """
    kw_words = set(keyword.split())
    text_words = set(text.split())
    if not kw_words:
        return 0.0
    overlap = kw_words & text_words
    if len(overlap) < 2 and len(kw_words) > 1:
        return 0.0
    return len(overlap) / len(kw_words)


def _keyword_match(title: str, desc: str, keywords: Sequence[str]) -> tuple[float, list[str]]:
    """Best keyword evidence.

      - keyword in TITLE (substring)          → 0.50
      - keyword in title (word overlap ≥ 60%) → 0.40
      - keyword in description only           → 0.20
    Each extra keyword found anywhere adds 0.05 (max 0.15).
    """
    best = 0.0
    reasons: list[str] = []
    hits = 0
    for raw in keywords:
        kw = _normalize(raw)
        if not kw:
            continue
        if kw in title:
            score, why = 0.50, f"Keyword in title: {raw}"
        elif _word_overlap_ratio(kw, title) >= 0.6:
            score, why = 0.40, f"Keyword overlap in title: {raw}"
        elif kw in desc:
            score, why = 0.20, f"Keyword in description: {raw}"
        else:
            continue
        hits += 1
        if score > best:
            best = score
            reasons.insert(0, why)
        else:
            reasons.append(why)
    bonus = min(0.05 * max(hits - 1, 0), 0.15)
    return best + bonus, reasons


def score_posting(posting: JobPosting, keywords: Sequence[str], location: str = "") -> ScoredPosting:
    title = _normalize(posting.title)
    desc = _normalize(posting.description)

    score, reasons = _keyword_match(title, desc, keywords)

    aliases = _expand_location(location)
    job_loc = _normalize(posting.location)
    if aliases and any(a in job_loc for a in aliases):
        score += 0.15
        reasons.append("Location match")

    if len(posting.sources) > 1:
        score += 0.05
        reasons.append(f"Listed on {len(posting.sources)} sources")

    score += 0.15 * posting.confidence
    return ScoredPosting(posting=posting, score=round(min(score, 1.0), 4), match_reasons=reasons)


def rank(
    postings: Sequence[JobPosting],
    keywords: Sequence[str],
    location: str = "",
    limit: int | None = None,
) -> list[ScoredPosting]:
    """Highest score first; ties keep their input order."""
    scored = [score_posting(p, keywords, location) for p in postings]
    ranked = sorted(scored, key=lambda s: -s.score)
    if limit is not None:
        ranked = ranked[:max(limit, 0)]
    log.debug("Ranked %d postings, returning %d", len(scored), len(ranked))
    return ranked
