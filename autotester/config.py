"""Environment resolution: envs.json entries merged with CLI overrides."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator, ValidationError

from .errors import ConfigurationError
from .models import BROWSERS, WAIT_UNTIL_STATES, RunConfig

LOGGER = logging.getLogger("autotester.config")

DEFAULT_ENV_NAME = "dev"
ENVS_ENV_VAR = "AUTOTESTER_ENVS"
BASE_URL_ENV_VAR = "AUTOTESTER_BASE_URL"
REPORTS_ENV_VAR = "AUTOTESTER_REPORTS_DIR"

ENVS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": {
        "type": "object",
        "properties": {
            "baseURL": {"type": "string", "minLength": 1},
            "browser": {"enum": list(BROWSERS)},
            "headless": {"type": "boolean"},
            "timeouts": {
                "type": "object",
                "properties": {
                    "step": {"type": "integer", "exclusiveMinimum": 0},
                    "global": {"type": "integer", "exclusiveMinimum": 0},
                },
            },
        },
    },
}

_VALIDATOR = Draft7Validator(ENVS_SCHEMA)


@dataclass
# pylint: disable=too-many-instance-attributes
class CliOverrides:
    """Values passed on the command line; ``None`` means not given."""

    base_url: Optional[str] = None
    browser: Optional[str] = None
    headless: Optional[bool] = None
    step_timeout_ms: Optional[int] = None
    global_timeout_ms: Optional[int] = None
    wait_until: Optional[str] = None
    stop_on_fail: Optional[bool] = None
    reports_dir: Optional[Path] = None


def default_envs_path() -> Path:
    return Path(os.getenv(ENVS_ENV_VAR) or "envs.json")


def load_envs_file(path: Path) -> Dict[str, Dict[str, Any]]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ConfigurationError(f"invalid {path.name}: {exc}") from exc
    _validate_envs(raw, path)
    return raw


def _validate_envs(payload: Any, path: Path) -> None:
    errors = sorted(_VALIDATOR.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = [_format_validation_error(error) for error in errors]
        raise ConfigurationError(f"invalid {path.name}: " + "; ".join(messages))


def _format_validation_error(error: ValidationError) -> str:
    path = "->".join(str(part) for part in error.path)
    location = f"at `{path}` " if path else ""
    return f"{location}{error.message}"


def resolve_run_config(
    env_name: Optional[str] = None,
    overrides: Optional[CliOverrides] = None,
    envs_path: Optional[Path] = None,
) -> RunConfig:
    """Build the effective RunConfig for one replay.

    Args:
        env_name: Requested environment; ``None`` means the implicit default.
        overrides: CLI values that win over the environment entry.
        envs_path: Location of the environments file.

    Returns:
        The merged configuration. The macro's own base URL is applied later,
        by the run controller, when neither source provides one.

    Raises:
        ConfigurationError: unknown environment, unreadable or invalid file,
            or an invalid override value.
    """
    overrides = overrides or CliOverrides()
    path = envs_path or default_envs_path()
    name = env_name or DEFAULT_ENV_NAME

    entry: Dict[str, Any] = {}
    if path.exists():
        envs = load_envs_file(path)
        if name not in envs:
            raise ConfigurationError(f"env '{name}' not found in {path.name}")
        entry = envs[name] or {}
    elif env_name is not None:
        raise ConfigurationError(f"env '{name}' requested but {path} does not exist")
    else:
        LOGGER.warning("No environments file at %s; using built-in defaults for '%s'", path, name)

    defaults = RunConfig()
    timeouts = entry.get("timeouts") or {}
    base_url = overrides.base_url or os.getenv(BASE_URL_ENV_VAR) or entry.get("baseURL")
    config = RunConfig(
        env_name=name,
        base_url=base_url or None,
        browser=_pick(overrides.browser, entry.get("browser"), defaults.browser),
        headless=_pick(overrides.headless, entry.get("headless"), defaults.headless),
        step_timeout_ms=_pick(overrides.step_timeout_ms, timeouts.get("step"), defaults.step_timeout_ms),
        global_timeout_ms=_pick(overrides.global_timeout_ms, timeouts.get("global"), defaults.global_timeout_ms),
        wait_until=_pick(overrides.wait_until, None, defaults.wait_until),
        stop_on_fail=_pick(overrides.stop_on_fail, None, defaults.stop_on_fail),
        reports_dir=Path(_pick(overrides.reports_dir, os.getenv(REPORTS_ENV_VAR), defaults.reports_dir)),
    )
    _check(config)
    return config


def _pick(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _check(config: RunConfig) -> None:
    if config.browser not in BROWSERS:
        raise ConfigurationError(f"unsupported browser '{config.browser}' (expected one of {', '.join(BROWSERS)})")
    if config.wait_until not in WAIT_UNTIL_STATES:
        raise ConfigurationError(f"unsupported wait-until state '{config.wait_until}'")
    if config.step_timeout_ms <= 0 or config.global_timeout_ms <= 0:
        raise ConfigurationError("timeouts must be positive")
