"""Canonical cache keys for search requests."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

# Filter values that mean "no constraint".
_NEUTRAL_VALUES = {"", "any", "all", "none"}


def _clean(text: Any) -> str:
    return " ".join(str(text).lower().split())


def normalize_keywords(keywords: str | Iterable[str] | None) -> tuple[str, ...]:
    """Sorted, lowercased, deduplicated keywords.

    A plain string is treated as a comma separated list.
    """
    if keywords is None:
        return ()
    if isinstance(keywords, str):
        keywords = keywords.split(",")
    return tuple(sorted({k for k in (_clean(kw) for kw in keywords) if k}))


def normalize_filters(filters: Mapping[str, Any] | None) -> tuple[tuple[str, str], ...]:
    if not filters:
        return ()
    out: dict[str, str] = {}
    for key, value in filters.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            parts = sorted({_clean(v) for v in value if v is not None} - {""})
            value = ",".join(parts)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        else:
            value = _clean(value)
        if value in _NEUTRAL_VALUES:
            continue
        out[_clean(key).replace(" ", "_")] = value
    return tuple(sorted(out.items()))


@dataclass(frozen=True)
class SearchSignature:
    keywords: tuple[str, ...]
    location: str
    filters: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_query(
        cls,
        keywords: str | Iterable[str] | None,
        location: str | None = "",
        filters: Mapping[str, Any] | None = None,
    ) -> SearchSignature:
        return cls(
            keywords=normalize_keywords(keywords),
            location=_clean(location or ""),
            filters=normalize_filters(filters),
        )

    @property
    def key(self) -> str:
        filters = ";".join(f"{k}={v}" for k, v in self.filters)
        return f"jobs:{','.join(self.keywords)}:{self.location}:{filters}"

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.key.encode("utf-8")).hexdigest()

    def __str__(self) -> str:
        return self.key
