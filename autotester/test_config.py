from __future__ import annotations

import json
from pathlib import Path

import pytest

from autotester.config import CliOverrides, resolve_run_config
from autotester.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("AUTOTESTER_BASE_URL", "AUTOTESTER_ENVS", "AUTOTESTER_REPORTS_DIR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def envs_file(tmp_path) -> Path:
    path = tmp_path / "envs.json"
    path.write_text(json.dumps({
        "dev": {"baseURL": "http://localhost:3000", "browser": "firefox", "headless": False,
                "timeouts": {"step": 2500, "global": 9000}},
        "staging": {"baseURL": "https://staging.example.com"},
    }), encoding="utf-8")
    return path


def test_env_entry_is_applied(envs_file):
    config = resolve_run_config("dev", envs_path=envs_file)

    assert config.env_name == "dev"
    assert config.base_url == "http://localhost:3000"
    assert config.browser == "firefox"
    assert config.headless is False
    assert (config.step_timeout_ms, config.global_timeout_ms) == (2500, 9000)


def test_defaults_fill_missing_fields(envs_file):
    config = resolve_run_config("staging", envs_path=envs_file)

    assert config.browser == "chromium"
    assert config.headless is True
    assert (config.step_timeout_ms, config.global_timeout_ms) == (5000, 10000)
    assert config.stop_on_fail is True


def test_cli_overrides_win(envs_file, monkeypatch):
    monkeypatch.setenv("AUTOTESTER_BASE_URL", "https://from-env.example.com")
    overrides = CliOverrides(base_url="https://cli.example.com", browser="webkit", headless=True,
                             step_timeout_ms=100, stop_on_fail=False, reports_dir=Path("out"))

    config = resolve_run_config("dev", overrides, envs_file)

    assert config.base_url == "https://cli.example.com"
    assert config.browser == "webkit"
    assert config.headless is True
    assert config.step_timeout_ms == 100
    assert config.global_timeout_ms == 9000
    assert config.stop_on_fail is False
    assert config.reports_dir == Path("out")


def test_base_url_environment_variable_beats_file(envs_file, monkeypatch):
    monkeypatch.setenv("AUTOTESTER_BASE_URL", "https://from-env.example.com")

    assert resolve_run_config("dev", envs_path=envs_file).base_url == "https://from-env.example.com"


def test_unknown_env_is_rejected(envs_file):
    with pytest.raises(ConfigurationError, match="env 'prod' not found"):
        resolve_run_config("prod", envs_path=envs_file)


def test_missing_file_with_explicit_env_is_an_error(tmp_path):
    with pytest.raises(ConfigurationError, match="does not exist"):
        resolve_run_config("dev", envs_path=tmp_path / "missing.json")


def test_missing_file_falls_back_to_defaults(tmp_path):
    config = resolve_run_config(envs_path=tmp_path / "missing.json")

    assert config.env_name == "dev"
    assert config.base_url is None
    assert config.browser == "chromium"


def test_invalid_file_is_reported(tmp_path):
    path = tmp_path / "envs.json"
    path.write_text(json.dumps({"dev": {"browser": "opera", "timeouts": {"step": 0}}}), encoding="utf-8")

    with pytest.raises(ConfigurationError) as excinfo:
        resolve_run_config("dev", envs_path=path)

    assert "dev->browser" in str(excinfo.value)
    assert "dev->timeouts->step" in str(excinfo.value)


def test_unparseable_file_is_reported(tmp_path):
    path = tmp_path / "envs.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="invalid envs.json"):
        resolve_run_config("dev", envs_path=path)


def test_envs_path_from_environment(envs_file, monkeypatch):
    monkeypatch.setenv("AUTOTESTER_ENVS", str(envs_file))

    assert resolve_run_config("staging").base_url == "https://staging.example.com"
