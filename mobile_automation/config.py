from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from .env import ensure_dotenv_loaded
from .errors import ConfigError

DEFAULT_SERVER_URL = "http://127.0.0.1:4723"

ENV_PREFIX = "MOBILE_AUTOMATION_"


def load_json_file(path: str | Path) -> dict[str, Any]:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"JSON file not found: {file_path}")
    if file_path.is_dir():
        raise IsADirectoryError(f"Expected a JSON file but found a directory: {file_path}")

    raw = file_path.read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected top-level JSON object in {file_path}")
    return data


def require_key(obj: Mapping[str, Any], key: str, *, context: str) -> Any:
    if key not in obj:
        raise ConfigError(f"Missing required key '{key}' in {context}")
    return obj[key]


def as_non_empty_str(value: Any, *, field: str, context: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{context}: '{field}' must be a non-empty string")
    return value.strip()


def as_positive_int(value: Any, *, field: str, context: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{context}: '{field}' must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{context}: '{field}' must be an integer") from e
    if parsed <= 0:
        raise ConfigError(f"{context}: '{field}' must be > 0")
    return parsed


def as_non_negative_float(value: Any, *, field: str, context: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{context}: '{field}' must be a number")
    try:
        parsed = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{context}: '{field}' must be a number") from e
    if parsed < 0:
        raise ConfigError(f"{context}: '{field}' must be >= 0")
    return parsed


@dataclass(frozen=True)
class BackendTimeouts:
    implicit_ms: int = 10_000
    page_load_ms: int = 30_000
    script_ms: int = 30_000


@dataclass(frozen=True)
class RunSettings:
    server_url: str = DEFAULT_SERVER_URL
    artifacts_dir: Path = Path("artifacts")
    command_timeout_s: float = 30.0
    wait_timeout_s: float = 30.0
    poll_interval_s: float = 0.25
    max_concurrency: int = 5
    scroll_attempts: int = 10
    backend_timeouts: BackendTimeouts = BackendTimeouts()


def _env(name: str) -> Optional[str]:
    value = os.environ.get(f"{ENV_PREFIX}{name}")
    if value is None or not value.strip():
        return None
    return value.strip()


def load_settings(*, load_dotenv: bool = True, **overrides: Any) -> RunSettings:
    """
    Build RunSettings from MOBILE_AUTOMATION_* environment variables.

    Keyword overrides (e.g. from CLI flags) win over the environment; None
    values are ignored so callers can pass argparse results straight through.
    """
    if load_dotenv:
        ensure_dotenv_loaded()

    context = "environment"
    values: dict[str, Any] = {}

    server_url = _env("SERVER_URL")
    if server_url is not None:
        values["server_url"] = server_url.rstrip("/")
    artifacts_dir = _env("ARTIFACTS_DIR")
    if artifacts_dir is not None:
        values["artifacts_dir"] = Path(artifacts_dir)

    for name, field_name in (
        ("COMMAND_TIMEOUT_S", "command_timeout_s"),
        ("WAIT_TIMEOUT_S", "wait_timeout_s"),
        ("POLL_INTERVAL_S", "poll_interval_s"),
    ):
        raw = _env(name)
        if raw is not None:
            values[field_name] = as_non_negative_float(raw, field=f"{ENV_PREFIX}{name}", context=context)

    for name, field_name in (
        ("MAX_CONCURRENCY", "max_concurrency"),
        ("SCROLL_ATTEMPTS", "scroll_attempts"),
    ):
        raw = _env(name)
        if raw is not None:
            values[field_name] = as_positive_int(raw, field=f"{ENV_PREFIX}{name}", context=context)

    for key, value in overrides.items():
        if value is None:
            continue
        if key not in RunSettings.__dataclass_fields__:
            raise ConfigError(f"Unknown setting: {key}")
        if key == "artifacts_dir":
            value = Path(value)
        values[key] = value

    settings = RunSettings(**values)
    if settings.poll_interval_s <= 0:
        raise ConfigError("poll_interval_s must be > 0")
    return settings
