"""Recover structured job data from unreliable text.

Free-text and JSON-ish payloads (LLM answers, scraped feeds) go through an
ordered pipeline of pure steps, each taking and returning ``(text, steps)``:

  1. strip_fences       -- markdown fences / markup wrappers
  2. locate_structure   -- outermost balanced array or object
  3. normalize_text     -- comments, quotes, bare keys, trailing commas, NaN
  4. full parse         -- ``json.loads``
  5. partial recovery   -- longest prefix that closes into valid JSON

:func:`extract` never raises; it returns :class:`Success` or :class:`Failure`.
:func:`to_postings` is the only way parsed data becomes :class:`JobPosting`.
"""
from __future__ import annotations

import json
import re
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Union

from job_aggregator.dedup import fingerprint
from job_aggregator.errors import ExtractionError
from job_aggregator.log import get_logger
from job_aggregator.models import JobPosting

log = get_logger(__name__)

RAW_PREVIEW_CHARS = 500
_MAX_PARTIAL_CANDIDATES = 256

Steps = tuple[str, ...]
Step = Callable[[str, Steps], tuple[str, Steps]]


@dataclass(frozen=True)
class Success:
    data: Union[dict, list]
    steps: Steps = ()
    partial: bool = False

    ok = True


@dataclass(frozen=True)
class Failure:
    error: str
    raw: str = ""
    steps: Steps = ()

    ok = False


ExtractionResult = Union[Success, Failure]


# ---------------------------------------------------------------------------
# String-literal aware scanning
# ---------------------------------------------------------------------------

def _segments(text: str) -> Iterator[tuple[bool, str]]:
    """Split *text* into ``(is_string_literal, chunk)`` pieces.

    Handles double- and single-quoted literals with backslash escapes; an
    unterminated literal runs to the end of the text.
    """
    i, n, start = 0, len(text), 0
    while i < n:
        ch = text[i]
        if ch in "\"'":
            if i > start:
                yield False, text[start:i]
            quote, j = ch, i + 1
            while j < n:
                if text[j] == "\\":
                    j += 2
                    continue
                if text[j] == quote:
                    j += 1
                    break
                j += 1
            yield True, text[i:j]
            i = start = j
            continue
        i += 1
    if start < n:
        yield False, text[start:]


def _map_code(text: str, fn: Callable[[str], str]) -> str:
    """Apply *fn* to everything outside string literals."""
    return "".join(chunk if is_str else fn(chunk) for is_str, chunk in _segments(text))


def _applied(name: str, before: str, after: str, steps: Steps) -> tuple[str, Steps]:
    return after, (steps + (name,) if after != before else steps)


# ---------------------------------------------------------------------------
# Stage 1: fences and wrappers
# ---------------------------------------------------------------------------

_FENCE_OPEN = re.compile(r"```[ \t]*(?:json5?|javascript|js|JSON)?[ \t]*\r?\n?", re.IGNORECASE)
_WRAPPER_TAGS = re.compile(r"</?(?:pre|code|json|output)(?:\s[^>]*)?>", re.IGNORECASE)


def strip_fences(text: str, steps: Steps = ()) -> tuple[str, Steps]:
    out = text.lstrip("\ufeff").strip()
    if "```" in out:
        out = _FENCE_OPEN.sub("", out).replace("```", "")
        steps += ("markdown-removal",)
    stripped = _WRAPPER_TAGS.sub("", out)
    text, steps = _applied("wrapper-removal", out, stripped, steps)
    return text.strip(), steps


# ---------------------------------------------------------------------------
# Stage 2: structure boundaries
# ---------------------------------------------------------------------------

def _balanced_span(text: str, opener: str) -> tuple[int, int] | None:
    """Span of the first *opener* and its matching closer, string aware.

    Both quote styles delimit strings, since single-quoted literals are only
    converted later. An unterminated structure spans to the end of the text.
    """
    start = text.find(opener)
    if start < 0:
        return None
    depth = 0
    quote = ""
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = ""
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return start, i + 1
    return start, len(text)


def locate_structure(text: str, steps: Steps = ()) -> tuple[str, Steps]:
    array = _balanced_span(text, "[")
    obj = _balanced_span(text, "{")
    # An array nested inside the object is a field, not the payload.
    if array and obj and obj[0] < array[0] < obj[1]:
        array = None
    if array:
        return text[array[0]:array[1]], steps + ("array-extraction",)
    if obj:
        return text[obj[0]:obj[1]], steps + ("object-extraction",)
    return text, steps


# ---------------------------------------------------------------------------
# Stage 3: normalization rules
# ---------------------------------------------------------------------------

_LINE_COMMENT = re.compile(r"//[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)(\s*:)")
_TRAILING_COMMA = re.compile(r",(\s*[\]}])")
_NON_FINITE = re.compile(r"(?<![\w.])(?:-?Infinity|NaN|undefined)(?![\w.])")
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def strip_comments(text: str, steps: Steps = ()) -> tuple[str, Steps]:
    out = _map_code(text, lambda c: _LINE_COMMENT.sub("", _BLOCK_COMMENT.sub("", c)))
    return _applied("comment-removal", text, out, steps)


def convert_single_quotes(text: str, steps: Steps = ()) -> tuple[str, Steps]:
    parts = []
    for is_str, chunk in _segments(text):
        if is_str and chunk.startswith("'"):
            body = chunk[1:-1] if len(chunk) > 1 and chunk.endswith("'") else chunk[1:]
            body = body.replace("\\'", "'").replace('"', '\\"')
            chunk = f'"{body}"'
        parts.append(chunk)
    return _applied("single-quote-conversion", text, "".join(parts), steps)


def quote_bare_keys(text: str, steps: Steps = ()) -> tuple[str, Steps]:
    def fix(chunk: str) -> str:
        # Twice, so adjacent keys separated by one comma both get quoted.
        for _ in range(2):
            chunk = _BARE_KEY.sub(r'\1"\2"\3', chunk)
        return chunk

    return _applied("key-quoting", text, _map_code(text, fix), steps)


def drop_trailing_commas(text: str, steps: Steps = ()) -> tuple[str, Steps]:
    out = _map_code(text, lambda c: _TRAILING_COMMA.sub(r"\1", c))
    return _applied("trailing-comma-removal", text, out, steps)


def replace_non_finite(text: str, steps: Steps = ()) -> tuple[str, Steps]:
    out = _map_code(text, lambda c: _NON_FINITE.sub("null", c))
    return _applied("non-finite-replacement", text, out, steps)


def strip_control_chars(text: str, steps: Steps = ()) -> tuple[str, Steps]:
    out = _map_code(text, lambda c: _CONTROL.sub("", c))
    return _applied("control-char-removal", text, out, steps)


NORMALIZERS: tuple[Step, ...] = (
    strip_comments,
    convert_single_quotes,
    quote_bare_keys,
    drop_trailing_commas,
    replace_non_finite,
    strip_control_chars,
)


def normalize_text(text: str, steps: Steps = ()) -> tuple[str, Steps]:
    for rule in NORMALIZERS:
        text, steps = rule(text, steps)
    return text, steps


# ---------------------------------------------------------------------------
# Stages 4 and 5: parsing
# ---------------------------------------------------------------------------

def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite literal {name}")


def _loads(text: str) -> Any:
    # strict=False admits raw newlines/tabs inside strings, common in LLM output.
    return json.loads(text, parse_constant=_reject_constant, strict=False)


def _partial_candidates(text: str) -> Iterator[str]:
    """Prefixes of *text* that end where a container closes, auto-closed.

    Only the last few close points are kept; candidates are built on demand,
    longest first.
    """
    start = min((i for i in (text.find("["), text.find("{")) if i >= 0), default=-1)
    if start < 0:
        return
    stack: list[str] = []
    closes: deque[tuple[int, str]] = deque(maxlen=_MAX_PARTIAL_CANDIDATES)
    in_string = escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            stack.append("}")
        elif ch == "[":
            stack.append("]")
        elif ch in "]}":
            if not stack or stack[-1] != ch:
                break
            stack.pop()
            closes.append((i + 1, "".join(reversed(stack))))
            if not stack:
                break
    for end, closers in reversed(closes):
        yield text[start:end] + closers


def parse_partial(text: str) -> Any:
    """Longest auto-closed prefix of *text* that parses; raises ValueError."""
    for candidate in _partial_candidates(text):
        try:
            value = _loads(candidate)
        except ValueError:
            continue
        if isinstance(value, (dict, list)):
            return value
    raise ValueError("no complete structure found")


PIPELINE: tuple[Step, ...] = (strip_fences, locate_structure, normalize_text)


def extract(raw_text: Any) -> ExtractionResult:
    """Run the five-stage pipeline; never raises."""
    if not isinstance(raw_text, str):
        return Failure(error=f"expected text, got {type(raw_text).__name__}",
                       raw=repr(raw_text)[:RAW_PREVIEW_CHARS], steps=("type-check",))
    if not raw_text.strip():
        return Failure(error="empty content", raw=raw_text, steps=("empty-check",))

    text, steps = raw_text, ()
    try:
        for stage in PIPELINE:
            text, steps = stage(text, steps)
    except Exception as exc:  # a cleanup rule must not take the caller down
        log.error("Cleanup stage failed: %s", exc)
        return Failure(error=f"cleanup failed: {exc}",
                       raw=raw_text[:RAW_PREVIEW_CHARS], steps=steps + ("cleanup-failed",))

    try:
        data = _loads(text)
    except (ValueError, RecursionError) as exc:
        last_error = str(exc)
        steps += ("initial-parse-failed",)
        log.debug("Full parse failed (%s); trying partial recovery", last_error)
    else:
        if isinstance(data, (dict, list)):
            return Success(data=data, steps=steps)
        last_error = f"top-level value is {type(data).__name__}, not an object or array"
        steps += ("initial-parse-failed",)

    try:
        data = parse_partial(text)
    except (ValueError, RecursionError) as exc:
        log.debug("Partial recovery failed: %s", exc)
        return Failure(
            error=f"JSON parsing failed: {last_error}",
            raw=raw_text[:RAW_PREVIEW_CHARS],
            steps=steps + ("partial-extraction-failed", "all-attempts-failed"),
        )
    return Success(data=data, steps=steps + ("partial-extraction",), partial=True)


# ---------------------------------------------------------------------------
# Typed boundary: parsed data -> JobPosting
# ---------------------------------------------------------------------------

_WRAPPER_KEYS = ("jobs", "results", "data", "postings", "items", "listings")

_ALIASES: dict[str, tuple[str, ...]] = {
    "title": ("title", "job_title", "jobTitle", "position", "role", "name"),
    "company": ("company", "company_name", "companyName", "employer", "employer_name", "organization"),
    "location": ("location", "job_location", "city", "candidate_required_location"),
    "description": ("description", "job_description", "summary", "snippet"),
    "salary": ("salary", "salary_range", "compensation", "pay"),
    "url": ("url", "job_url", "jobUrl", "apply_url", "application_url", "link", "redirect_url"),
    "posted_date": ("posted_date", "postedDate", "date_posted", "datePosted", "posted_at",
                    "publication_date", "created"),
}


def _pick(record: dict[str, Any], field: str) -> Any:
    for key in _ALIASES[field]:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, dict):
        value = value.get("display_name") or value.get("name") or ""
    return " ".join(str(value).split())


def _unwrap(data: Any) -> list[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in _WRAPPER_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
        if data and all(k.isdigit() for k in data):
            return list(data.values())
        return [data]
    return []


def to_posting(record: Any, source_id: str, confidence: float = 1.0) -> JobPosting:
    """Validate one record; raises ExtractionError when it cannot be used."""
    if not isinstance(record, dict):
        raise ExtractionError(f"record is {type(record).__name__}, not an object")
    title = _text(_pick(record, "title"))
    company = _text(_pick(record, "company"))
    if not title or not company:
        raise ExtractionError("record lacks title or company")
    location = _text(_pick(record, "location"))

    salary = _pick(record, "salary")
    url = _pick(record, "url")
    posted = _pick(record, "posted_date")

    own = record.get("confidence")
    if isinstance(own, (int, float)) and not isinstance(own, bool) and 0.0 <= own <= 1.0:
        confidence = float(own)

    return JobPosting(
        fingerprint=fingerprint(title, company, location),
        title=title,
        company=company,
        location=location,
        description=str(_pick(record, "description") or "").strip(),
        salary=_text(salary) or None,
        urls=(str(url).strip(),) if url else (),
        sources=(source_id,),
        posted_date=str(posted) if posted is not None else None,
        confidence=max(0.0, min(1.0, confidence)),
    )


def to_postings(data: Any, source_id: str, confidence: float = 1.0) -> tuple[list[JobPosting], int]:
    """Turn parsed data into postings; returns ``(postings, dropped_count)``."""
    postings: list[JobPosting] = []
    dropped = 0
    for record in _unwrap(data):
        try:
            postings.append(to_posting(record, source_id, confidence))
        except ExtractionError as exc:
            dropped += 1
            log.debug("[%s] dropped record: %s", source_id, exc)
    if dropped:
        log.info("[%s] dropped %d malformed record(s)", source_id, dropped)
    return postings, dropped
