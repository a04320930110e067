from __future__ import annotations

import logging

from tandem.config import ClientConfig, load_config, parse_bool, parse_float, parse_int, parse_level
from tandem.paths import config_dir


def test_defaults_without_environment(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_config()
    assert config == ClientConfig()
    assert config.auth_headers() == {}


def test_environment_overrides_and_trailing_slash(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TANDEM_BASE_URL", "http://agent.local:9000/")
    monkeypatch.setenv("TANDEM_API_TOKEN", " tok ")
    monkeypatch.setenv("TANDEM_RECONNECT_MAX_DELAY_S", "5")
    monkeypatch.setenv("TANDEM_RECONNECT_JITTER", "-1")
    monkeypatch.setenv("TANDEM_REQUEST_TIMEOUT_S", "soon")
    config = load_config()
    assert config.base_url == "http://agent.local:9000"
    assert config.auth_headers() == {"Authorization": "Bearer tok"}
    assert config.reconnect_max_delay == 5.0
    assert config.reconnect_jitter == 0.2
    assert config.request_timeout == 30.0


def test_env_files_fill_in_but_never_override(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    env_file = tmp_path / "custom.env"
    env_file.write_text("TANDEM_BASE_URL=http://from-file:1\nTANDEM_API_TOKEN=file-token\n")
    (config_dir() / ".env").write_text("TANDEM_RECONNECT_BASE_DELAY_S=2.5\n")
    monkeypatch.setenv("TANDEM_API_TOKEN", "shell-token")
    config = load_config(env_file)
    assert config.base_url == "http://from-file:1"
    assert config.api_token == "shell-token"
    assert config.reconnect_base_delay == 2.5


def test_tolerant_parsers() -> None:
    assert parse_level("debug", logging.INFO) == logging.DEBUG
    assert parse_level("15", logging.INFO) == 15
    assert parse_level("chatty", logging.WARNING) == logging.WARNING
    assert parse_bool(" Yes ", False) is True
    assert parse_bool(None, True) is True
    assert parse_int("x", 3) == 3
    assert parse_float("0.5", 1.0) == 0.5
    assert parse_float("0.5", 1.0, minimum=1.0) == 1.0


def test_non_finite_floats_fall_back_to_defaults(tmp_path, monkeypatch) -> None:
    assert parse_float("nan", 0.2) == 0.2
    assert parse_float("inf", 30.0) == 30.0
    assert parse_float("-inf", 1.0, minimum=-5.0) == 1.0
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TANDEM_RECONNECT_JITTER", "nan")
    monkeypatch.setenv("TANDEM_RECONNECT_MAX_DELAY_S", "inf")
    config = load_config()
    assert config.reconnect_jitter == 0.2
    assert config.reconnect_max_delay == ClientConfig().reconnect_max_delay
