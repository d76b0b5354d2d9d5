"""
Unit tests for settings loading.
"""
from pathlib import Path

from job_aggregator.config import Settings, load_settings
from job_aggregator.models import RatePolicy

YAML = """
search:
  max_sources: 3
  deadline_seconds: 12
cache:
  ttl_days: 7
  store: FILE
  data_dir: {data_dir}
dedup:
  similarity_threshold: 0.4
rate_limits:
  default:
    max_requests: 20
    min_delay_seconds: 0.2
  sources:
    textgen:
      max_requests: 2
      bogus_key: 1
text_generation:
  model: gpt-4o-mini
  base_url: https://api.openai.com/v1
  api_key_env: OPENAI_API_KEY
"""


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "absent.yaml")
    assert settings == Settings()
    assert settings.cache_ttl_seconds == 21 * 86400


def test_yaml_overrides(tmp_path):
    path = tmp_path / "aggregator.yaml"
    path.write_text(YAML.format(data_dir=tmp_path / "data"), encoding="utf-8")
    settings = load_settings(path)

    assert settings.max_sources == 3
    assert settings.deadline_seconds == 12.0
    assert settings.default_limit == 50
    assert settings.cache_ttl_days == 7.0
    assert settings.store == "file"
    assert settings.data_dir == Path(tmp_path / "data")
    assert settings.similarity_threshold == 0.4
    assert settings.text_generation.model == "gpt-4o-mini"
    assert settings.text_generation.api_key_env == "OPENAI_API_KEY"


def test_source_policy_inherits_from_default(tmp_path):
    path = tmp_path / "aggregator.yaml"
    path.write_text(YAML.format(data_dir=tmp_path), encoding="utf-8")
    settings = load_settings(path)

    assert settings.default_policy.max_requests == 20
    assert settings.default_policy.max_retries == RatePolicy().max_retries
    textgen = settings.policy_for("textgen")
    assert textgen.max_requests == 2
    assert textgen.min_delay_seconds == 0.2
    assert settings.policy_for("remotive") is settings.default_policy


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "aggregator.yaml"
    path.write_text("", encoding="utf-8")
    assert load_settings(path) == Settings()
