"""
Unit tests for providers and provider error classification (HTTP mocked).
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests

from job_aggregator.config import Settings
from job_aggregator.errors import (
    PermanentProviderError,
    TransientProviderError,
    classify_error,
)
from job_aggregator.sources import (
    AdzunaSource,
    JSearchSource,
    MockSource,
    RemotiveSource,
    TextGenerationSource,
    fetch_json,
    get_sources,
)
from job_aggregator.sources.remotive import _search_term


def _response(status=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.json.return_value = payload if payload is not None else {}
    return resp


def _http_error(status):
    resp = requests.Response()
    resp.status_code = status
    return requests.HTTPError(f"{status} error", response=resp)


@pytest.mark.parametrize("exc, transient", [
    (_http_error(503), True),
    (_http_error(429), True),
    (_http_error(408), True),
    (_http_error(401), False),
    (_http_error(404), False),
    (requests.Timeout("read timeout"), True),
    (requests.ConnectionError("refused"), True),
    (TimeoutError("slow"), True),
    (ValueError("bad json"), False),
    (KeyError("results"), False),
])
def test_classify_error(exc, transient):
    err = classify_error(exc, "src")
    assert err.transient is transient
    assert err.source_id == "src"


def test_classify_error_passes_taxonomy_through():
    original = PermanentProviderError("bad key")
    assert classify_error(original, "src") is original


@patch("job_aggregator.sources.base.requests.get")
def test_fetch_json_success(mock_get):
    mock_get.return_value = _response(payload={"ok": True})
    data, latency_ms = fetch_json("src", "https://api.example.com", params={"q": "x"})
    assert data == {"ok": True}
    assert latency_ms >= 0
    mock_get.assert_called_once()


@patch("job_aggregator.sources.base.requests.get")
def test_fetch_json_server_error_is_transient(mock_get):
    mock_get.return_value = _response(status=502, text="bad gateway")
    with pytest.raises(TransientProviderError) as excinfo:
        fetch_json("src", "https://api.example.com")
    assert excinfo.value.status_code == 502


@patch("job_aggregator.sources.base.requests.get")
def test_fetch_json_auth_error_is_permanent(mock_get):
    mock_get.return_value = _response(status=403, text="forbidden")
    with pytest.raises(PermanentProviderError):
        fetch_json("src", "https://api.example.com")


@patch("job_aggregator.sources.base.requests.get")
def test_fetch_json_timeout_is_transient(mock_get):
    mock_get.side_effect = requests.Timeout("timed out")
    with pytest.raises(TransientProviderError):
        fetch_json("src", "https://api.example.com")


@patch("job_aggregator.sources.base.requests.get")
def test_fetch_json_non_json_is_permanent(mock_get):
    resp = _response()
    resp.json.side_effect = ValueError("Expecting value")
    mock_get.return_value = resp
    with pytest.raises(PermanentProviderError):
        fetch_json("src", "https://api.example.com")


@patch("job_aggregator.sources.base.requests.get")
def test_adzuna_maps_records_and_picks_country(mock_get):
    mock_get.return_value = _response(payload={"results": [{
        "title": "Python Developer",
        "company": {"display_name": "Acme"},
        "location": {"display_name": "London"},
        "redirect_url": "https://adzuna.example/1",
        "description": "Django",
        "salary_min": 50000,
        "salary_max": 60000,
        "created": "2024-05-01T00:00:00Z",
    }]})
    response = AdzunaSource("id", "key").query(["python"], "London, UK")
    assert "/gb/" in mock_get.call_args[0][0]
    assert response.is_structured
    record = response.records[0]
    assert record["company"] == "Acme"
    assert record["location"] == "London"
    assert record["salary"] == "50000-60000"


@patch("job_aggregator.sources.base.requests.get")
def test_jsearch_builds_location(mock_get):
    mock_get.return_value = _response(payload={"data": [{
        "job_title": "SRE", "employer_name": "Acme", "job_city": "Austin",
        "job_state": "TX", "job_apply_link": "https://jsearch.example/1",
        "job_description": "On-call",
    }]})
    response = JSearchSource("key").query(["sre"], "Austin")
    assert mock_get.call_args.kwargs["params"]["query"] == "sre in Austin"
    assert response.records[0]["location"] == "Austin, TX"


def test_remotive_search_term():
    assert _search_term(["senior python engineer"]) == "python"
    assert _search_term(["senior engineer"]) == "senior"
    assert _search_term([]) == ""


@patch("job_aggregator.sources.base.requests.get")
def test_remotive_appends_tags(mock_get):
    mock_get.return_value = _response(payload={"jobs": [{
        "title": "Backend Engineer", "company_name": "Remote Co",
        "candidate_required_location": "", "url": "https://remotive.example/1",
        "description": "APIs", "tags": ["python", "aws"],
    }]})
    response = RemotiveSource().query(["python"], "")
    record = response.records[0]
    assert record["location"] == "Remote"
    assert record["description"] == "APIs python aws"


def test_text_generation_returns_free_text():
    source = TextGenerationSource("key", "sonar", "https://llm.example", cost_per_request=0.005)
    client = MagicMock()
    message = SimpleNamespace(content='```json\n[{"title": "Dev", "company": "Acme"}]\n```')
    client.chat.completions.create.return_value = SimpleNamespace(choices=[SimpleNamespace(message=message)])
    with patch.object(source, "_get_client", return_value=client):
        response = source.query(["python"], "Toronto", limit=5)
    assert not response.is_structured
    assert response.text.startswith("```json")
    assert response.cost == 0.005
    prompt = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert "python" in prompt and "Toronto" in prompt


def test_text_generation_errors_are_classified():
    source = TextGenerationSource("key", "sonar", "https://llm.example")
    client = MagicMock()
    client.chat.completions.create.side_effect = TimeoutError("upstream timeout")
    with patch.object(source, "_get_client", return_value=client):
        with pytest.raises(TransientProviderError):
            source.query(["python"], "")


def test_mock_source_respects_limit():
    response = MockSource().query(["sre"], "", limit=2)
    assert len(response.records) == 2
    assert response.records[0]["title"] == "Senior Sre"


def _env(values):
    return lambda key, default="": values.get(key, default)


def test_get_sources_registers_configured_providers():
    sources = get_sources(Settings(), _env({"JSEARCH_API_KEY": "k", "TEXTGEN_API_KEY": "t"}))
    assert [s.source_id for s in sources] == ["jsearch", "textgen", "remotive"]


def test_get_sources_falls_back_to_mock():
    sources = get_sources(Settings(), _env({"DISABLE_REMOTIVE": "1"}))
    assert [s.source_id for s in sources] == ["mock"]
