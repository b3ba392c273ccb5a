"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from geotask_core.config import ClientConfig, ConfigLoadError, config_from_dict, load_config


def test_defaults() -> None:
    config = ClientConfig()
    assert config.base_url == "https://api.geotask.com"
    assert config.requests_per_minute == 60
    assert config.refresh_threshold == 300.0
    assert config.max_reconnect_attempts == 5
    assert config.realtime_url is None


def test_load_nested_sections(tmp_path: Path) -> None:
    path = tmp_path / "client.yaml"
    path.write_text(
        """
base_url: https://staging.geotask.com
request_timeout: 20
rate_limit:
  requests_per_minute: 120
  fail_fast: false
retry:
  max_retries: 5
  initial_delay: 0.5
session:
  refresh_threshold: 120
realtime:
  url: wss://rt.geotask.com/ws
  typing_ttl: 5
"""
    )
    config = load_config(path)
    assert config.base_url == "https://staging.geotask.com"
    assert config.request_timeout == 20
    assert config.requests_per_minute == 120
    assert config.rate_limit_fail_fast is False
    assert config.max_retries == 5
    assert config.retry_initial_delay == 0.5
    assert config.refresh_threshold == 120
    assert config.realtime_url == "wss://rt.geotask.com/ws"
    assert config.typing_ttl == 5


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path) == ClientConfig()


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="File not found"):
        load_config(tmp_path / "missing.yaml")


def test_invalid_yaml(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("base_url: [unclosed")
    with pytest.raises(ConfigLoadError, match="Invalid YAML"):
        load_config(path)


def test_top_level_must_be_mapping(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ConfigLoadError, match="mapping"):
        load_config(path)


@pytest.mark.parametrize(
    "data",
    [
        {"colour": "blue"},
        {"realtime": {"port": 1}},
        {"retry": 3},
    ],
)
def test_unknown_or_malformed_options_rejected(data: dict[str, object]) -> None:
    with pytest.raises(ConfigLoadError):
        config_from_dict(data)


@pytest.mark.parametrize(
    "data",
    [
        {"requests_per_minute": 0},
        {"retry": {"max_retries": 0}},
        {"base_url": ""},
        {"requests_per_minute": "abc"},
        {"rate_limit": {"fail_fast": "yes"}},
        {"retry": {"max_retries": True}},
        {"cache": {"ttl": "5m"}},
        {"realtime": {"url": 42}},
    ],
)
def test_invalid_values_rejected(data: dict[str, object]) -> None:
    with pytest.raises(ConfigLoadError):
        config_from_dict(data)


def test_wrong_type_in_file_reports_option(tmp_path: Path) -> None:
    path = tmp_path / "client.yaml"
    path.write_text("rate_limit:\n  requests_per_minute: abc\n")
    with pytest.raises(ConfigLoadError, match="requests_per_minute"):
        load_config(path)


def test_integers_accepted_for_float_options() -> None:
    assert config_from_dict({"cache": {"ttl": 60}}).cache_ttl == 60
