"""
`.env` support for run settings.

The file sits in the directory the runner is started from (usually the
test project), or wherever MOBILE_AUTOMATION_DOTENV points. Values already
in the environment always win, so CI variables override a checked-in file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

DOTENV_VAR = "MOBILE_AUTOMATION_DOTENV"

_applied_files: set[Path] = set()


def dotenv_path(path: Optional[str | Path] = None) -> Path:
    if path is None:
        path = os.environ.get(DOTENV_VAR) or Path.cwd() / ".env"
    return Path(path).expanduser().resolve()


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    # unquoted values may carry a trailing " # note"
    return value.split(" #", 1)[0].rstrip()


def parse_dotenv(text: str) -> dict[str, str]:
    """KEY=value lines; `export` prefixes, quotes and comments are handled, anything else is skipped."""
    parsed: dict[str, str] = {}
    for line in (raw.strip() for raw in text.splitlines()):
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.removeprefix("export ").partition("=")
        if sep and key.strip():
            parsed[key.strip()] = _unquote(value.strip())
    return parsed


def load_dotenv(*, path: Optional[str | Path] = None, override: bool = False) -> dict[str, str]:
    """Copy `.env` entries into os.environ and return the ones applied."""
    target = dotenv_path(path)
    if target.is_dir():
        raise ConfigError(f"{target}: expected a .env file, found a directory")
    if not target.is_file():
        return {}

    applied = {
        key: value
        for key, value in parse_dotenv(target.read_text(encoding="utf-8")).items()
        if override or key not in os.environ
    }
    os.environ.update(applied)
    if applied:
        logger.debug("applied %s from %s", ", ".join(sorted(applied)), target)
    return applied


def ensure_dotenv_loaded(path: Optional[str | Path] = None) -> dict[str, str]:
    # load_settings runs once per CLI call and once per server run; read each file once
    target = dotenv_path(path)
    if target in _applied_files:
        return {}
    _applied_files.add(target)
    return load_dotenv(path=target)
