"""Configuration loading helpers for CLI entrypoints."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from .options import ConfigError

DEFAULT_CONFIG_FILE = "linksweep.config.json"

# Environment variables consulted when neither a flag nor the config file
# sets the value.
ENV_SETTINGS = {
    "concurrency": ("LINKSWEEP_CONCURRENCY", int),
    "timeout": ("LINKSWEEP_TIMEOUT", float),
    "user_agent": ("LINKSWEEP_USER_AGENT", str),
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def load_config(
    *,
    config_dir: Path,
    config_env_file: Path,
    cwd: Path,
    load_env: Callable[[Path], bool],
    copy_file: Callable[[Path, Path], str],
) -> None:
    """Load .env configuration with fallback to user config directory."""
    local_env = cwd / ".env"
    if local_env.is_file():
        load_env(local_env)
        return

    if config_env_file.is_file():
        load_env(config_env_file)
        return

    package_dir = Path(__file__).parent.parent
    example_file = package_dir / ".env.example"

    if example_file.is_file():
        try:
            config_dir.mkdir(parents=True, exist_ok=True)
            copy_file(example_file, config_env_file)
            logging.info(
                "Created config file at %s from .env.example.", config_env_file
            )
            load_env(config_env_file)
        except OSError as exc:
            logging.debug("Could not create %s: %s", config_env_file, exc)


def normalize_key(key: str) -> str:
    """``retryErrorsCount`` / ``retry-errors-count`` → ``retry_errors_count``."""
    return _CAMEL_BOUNDARY.sub("_", key).replace("-", "_").lower()


def read_config_file(path: Optional[str], cwd: Optional[Path] = None) -> Dict[str, Any]:
    """Read a JSON config file.

    Without ``path`` the default ``linksweep.config.json`` in ``cwd`` is used
    if it exists. An explicit ``path`` that cannot be read is an error.

    Raises:
        ConfigError: If an explicit file is missing or any file is not a
            JSON object.
    """
    explicit = path is not None
    config_path = Path(path) if explicit else (cwd or Path.cwd()) / DEFAULT_CONFIG_FILE
    if not config_path.is_file():
        if explicit:
            raise ConfigError(f"Unable to find config file {config_path}")
        return {}

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in config file {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a JSON object")
    return {normalize_key(key): value for key, value in data.items()}


def env_settings(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect settings from ``LINKSWEEP_*`` environment variables.

    Raises:
        ConfigError: If a numeric variable does not parse.
    """
    environ = os.environ if environ is None else environ
    settings: Dict[str, Any] = {}
    for key, (var, convert) in ENV_SETTINGS.items():
        raw = environ.get(var)
        if not raw:
            continue
        try:
            settings[key] = convert(raw)
        except ValueError as exc:
            raise ConfigError(f"Invalid value for {var}: {raw!r}") from exc
    return settings


def merge_settings(
    flags: Mapping[str, Any],
    config: Mapping[str, Any],
    env: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Combine settings; flags beat the config file, which beats the env.

    Flags that were not passed are ``None`` and never clobber lower layers.
    """
    merged: Dict[str, Any] = dict(env or {})
    merged.update({k: v for k, v in config.items() if v is not None})
    merged.update({k: v for k, v in flags.items() if v is not None})
    return merged
