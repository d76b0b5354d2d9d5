"""
Unit tests for structured extraction from unreliable text.
"""
import tracemalloc

import pytest

from job_aggregator.errors import ExtractionError
from job_aggregator.extractor import (
    RAW_PREVIEW_CHARS,
    Failure,
    Success,
    extract,
    normalize_text,
    strip_fences,
    to_posting,
    to_postings,
)


def test_fenced_object_with_trailing_comma():
    result = extract('```json\n{"a":1,}\n```')
    assert isinstance(result, Success)
    assert result.data == {"a": 1}
    assert "markdown-removal" in result.steps
    assert "trailing-comma-removal" in result.steps
    assert not result.partial
    assert result.data == extract('{"a":1}').data


def test_array_surrounded_by_prose():
    text = 'Here are the jobs:\n[{"title": "Dev", "company": "Acme"}]\nHope this helps!'
    result = extract(text)
    assert result.ok
    assert result.data == [{"title": "Dev", "company": "Acme"}]
    assert "array-extraction" in result.steps


def test_object_wrapping_array_is_kept_whole():
    """An array nested in the object is a field, not the payload."""
    result = extract('Result: {"jobs": [{"title": "A"}], "count": 1} done.')
    assert result.ok
    assert result.data == {"jobs": [{"title": "A"}], "count": 1}
    assert "object-extraction" in result.steps


def test_single_quotes_converted():
    result = extract("{'title': 'Dev', 'company': \"O'Reilly\"}")
    assert result.ok
    assert result.data == {"title": "Dev", "company": "O'Reilly"}


def test_bare_keys_quoted():
    result = extract('{title: "Dev", company: "Acme"}')
    assert result.ok
    assert result.data == {"title": "Dev", "company": "Acme"}
    assert "key-quoting" in result.steps


def test_comments_removed_but_urls_in_strings_kept():
    text = '{"a": 1, // note\n "url": "https://example.com/x" /* block */}'
    result = extract(text)
    assert result.ok
    assert result.data == {"a": 1, "url": "https://example.com/x"}


def test_non_finite_literals_become_null():
    result = extract('{"a": NaN, "b": -Infinity, "c": undefined, "d": 2}')
    assert result.ok
    assert result.data == {"a": None, "b": None, "c": None, "d": 2}


def test_truncated_array_recovers_complete_records():
    text = '[{"title": "A", "company": "B"}, {"title": "C", "comp'
    result = extract(text)
    assert isinstance(result, Success)
    assert result.partial
    assert result.data == [{"title": "A", "company": "B"}]
    assert "initial-parse-failed" in result.steps
    assert "partial-extraction" in result.steps


def test_large_truncated_feed_recovers_in_bounded_memory():
    """A cut-off feed of thousands of records is recovered without building every prefix."""
    records = ",".join(f'{{"title": "Job {n}", "company": "Acme"}}' for n in range(3000))
    text = "[" + records + ', {"title": "Job 3000", "comp'

    tracemalloc.start()
    try:
        result = extract(text)
        _, peak = tracemalloc.get_traced_memory()
    finally:
        tracemalloc.stop()

    assert isinstance(result, Success)
    assert result.partial
    assert len(result.data) == 3000
    assert result.data[-1] == {"title": "Job 2999", "company": "Acme"}
    assert peak < 32 * 1024 * 1024


def test_closer_inside_single_quoted_value_does_not_end_structure():
    result = extract("Found: {'title': 'a}b', 'company': 'Acme'} end")
    assert result.ok
    assert not result.partial
    assert result.data == {"title": "a}b", "company": "Acme"}


def test_unparseable_text_is_a_failure():
    result = extract("Sorry, I could not find any jobs for that search.")
    assert isinstance(result, Failure)
    assert not result.ok
    assert result.steps[-1] == "all-attempts-failed"
    assert result.error.startswith("JSON parsing failed")


def test_failure_raw_is_truncated():
    result = extract("x" * 2000)
    assert isinstance(result, Failure)
    assert len(result.raw) == RAW_PREVIEW_CHARS


@pytest.mark.parametrize("value", [None, 42, "", "   \n"])
def test_empty_or_non_text_input(value):
    result = extract(value)
    assert isinstance(result, Failure)


def test_steps_are_returned_not_mutated():
    steps = ("earlier",)
    text, new_steps = strip_fences("```\n[1]\n```", steps)
    assert steps == ("earlier",)
    assert new_steps == ("earlier", "markdown-removal")
    assert text == "[1]"


def test_normalization_is_idempotent():
    once, _ = normalize_text("{a: 1, 'b': [2,],}")
    twice, steps = normalize_text(once)
    assert once == twice
    assert steps == ()


def test_to_postings_unwraps_and_counts_dropped():
    data = {"jobs": [
        {"title": "Dev", "company": "Acme", "location": "Paris"},
        {"title": "No company here"},
        "junk",
    ]}
    postings, dropped = to_postings(data, "textgen", confidence=0.8)
    assert dropped == 2
    assert len(postings) == 1
    assert postings[0].sources == ("textgen",)
    assert postings[0].confidence == 0.8


def test_to_posting_field_aliases():
    posting = to_posting(
        {"job_title": "  Data   Engineer ", "employer_name": "Acme",
         "city": "Berlin", "link": "https://example.com/1", "datePosted": "2024-05-01"},
        "jsearch",
    )
    assert posting.title == "Data Engineer"
    assert posting.company == "Acme"
    assert posting.location == "Berlin"
    assert posting.urls == ("https://example.com/1",)
    assert posting.posted_date == "2024-05-01"


def test_record_confidence_overrides_default():
    posting = to_posting({"title": "Dev", "company": "Acme", "confidence": 0.3}, "textgen", 0.8)
    assert posting.confidence == 0.3


def test_to_posting_rejects_incomplete_records():
    with pytest.raises(ExtractionError):
        to_posting({"company": "Acme"}, "x")
    with pytest.raises(ExtractionError):
        to_posting(["not", "a", "record"], "x")
