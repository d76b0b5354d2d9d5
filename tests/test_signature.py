"""
Unit tests for search signatures (cache keys).
"""
from job_aggregator.signature import SearchSignature, normalize_filters, normalize_keywords


def test_keyword_case_and_whitespace_collapse():
    """Equivalent spellings of one keyword produce one keyword."""
    sig = SearchSignature.from_query(["Python", "python ", "PYTHON"])
    assert sig.keywords == ("python",)


def test_keyword_order_does_not_matter():
    a = SearchSignature.from_query(["Django", "Python"], "Toronto")
    b = SearchSignature.from_query(["python", "django"], "  toronto ")
    assert a == b
    assert a.key == b.key
    assert a.digest == b.digest


def test_string_keywords_split_on_commas():
    assert normalize_keywords("Python Developer,  backend ,") == ("backend", "python developer")
    assert normalize_keywords(None) == ()


def test_neutral_filters_are_dropped():
    """'any', 'all', 'none' and empty values do not constrain the search."""
    filters = normalize_filters({"Remote": "Any", "Job Type": "Full  Time", "salary": None, "level": ""})
    assert filters == (("job_type", "full time"),)


def test_filter_value_types():
    filters = normalize_filters({"remote": True, "level": ["Senior", "junior", "senior"]})
    assert filters == (("level", "junior,senior"), ("remote", "true"))


def test_key_format():
    sig = SearchSignature.from_query("python, django", "Toronto", {"type": "Contract"})
    assert sig.key == "jobs:django,python:toronto:type=contract"
    assert str(sig) == sig.key


def test_distinct_queries_have_distinct_keys():
    assert (SearchSignature.from_query("python", "toronto").key
            != SearchSignature.from_query("python", "vancouver").key)
    assert (SearchSignature.from_query("python", filters={"remote": "true"}).key
            != SearchSignature.from_query("python").key)
