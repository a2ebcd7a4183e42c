"""Reading, layering and typing the relay configuration.

Layers, lowest priority first:
1. User config (~/.config/codexrelay/, ~/.codexrelay/ or %APPDATA%)
2. Project config (<workspace>/.codexrelay/config.yaml)
3. Environment: CODEX_BIN, CODEX_TIMEOUT_MS, CODEX_RELAY_LOG

A file that is missing, unreadable or not valid YAML contributes nothing.
Values that parse but make no sense (a non-numeric timeout, args that are
not a list) raise ConfigError, since running with them would fail later and
less clearly.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from codexrelay.config.merge import merge_configs
from codexrelay.config.paths import get_config_paths, get_default_index_path
from codexrelay.config.schema import (
    CodexConfig,
    LoggingConfig,
    RelayConfig,
    SessionStoreConfig,
)
from codexrelay.errors import ConfigError
from codexrelay.logging import LOG_ENV_VAR

# Plain stdlib logger: config is read before setup_logging() runs
_log = logging.getLogger("codexrelay.config")

CODEX_BIN_ENV_VAR = "CODEX_BIN"
CODEX_TIMEOUT_ENV_VAR = "CODEX_TIMEOUT_MS"

KNOWN_SECTIONS = frozenset({"codex", "sessions", "logging"})

# Config for the process cwd, filled by load_config(workspace_cwd=None)
_cached_config: RelayConfig | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Parse one YAML layer; anything but a readable mapping yields {}."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        _log.warning("Cannot read config %s: %s", path, e)
        return {}

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        _log.warning("Ignoring invalid YAML in %s: %s", path, e)
        return {}

    if data is not None and not isinstance(data, dict):
        _log.warning("Ignoring %s: top level is not a mapping", path)
    return data if isinstance(data, dict) else {}


def env_overrides() -> dict[str, Any]:
    """The environment layer.

    CODEX_TIMEOUT_MS set to an empty string still counts: it switches the
    timeout off even when a config file sets one.
    """
    overrides: dict[str, Any] = {}

    binary = os.environ.get(CODEX_BIN_ENV_VAR)
    if binary:
        overrides.setdefault("codex", {})["binary"] = binary

    timeout = os.environ.get(CODEX_TIMEOUT_ENV_VAR)
    if timeout is not None:
        overrides.setdefault("codex", {})["timeout_ms"] = timeout.strip() or 0

    log_path = os.environ.get(LOG_ENV_VAR)
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    return overrides


def parse_timeout_ms(value: Any) -> int | None:
    """Normalize a timeout setting to milliseconds.

    Accepts a non-negative integer or an integer string. 0, "" and None
    mean no timeout.

    Raises:
        ConfigError: For anything else.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"Invalid Codex timeout: {value!r}")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = int(text, 10)
        except ValueError:
            raise ConfigError(f"Invalid Codex timeout: {text!r}") from None
    if not isinstance(value, int) or value < 0:
        raise ConfigError(f"Invalid Codex timeout: {value!r}")
    return value or None


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"{name} must be a mapping, got {section!r}")
    return section


def dict_to_config(data: dict[str, Any], workspace_cwd: str | None = None) -> RelayConfig:
    """Type-check the merged layers and build a RelayConfig.

    Args:
        data: Result of merge_configs().
        workspace_cwd: Workspace the relay serves; defaults to the process cwd.

    Raises:
        ConfigError: If a value has the wrong shape.
    """
    codex_data = _section(data, "codex")
    binary = codex_data.get("binary") or "codex"
    if not isinstance(binary, str):
        raise ConfigError(f"codex.binary must be a string, got {binary!r}")
    args = codex_data.get("args", ["app-server"])
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise ConfigError(f"codex.args must be a list of strings, got {args!r}")

    index_path = _section(data, "sessions").get("index_path")
    log_data = _section(data, "logging")

    return RelayConfig(
        workspace_cwd=os.path.abspath(workspace_cwd or os.getcwd()),
        codex=CodexConfig(
            binary=binary,
            args=list(args),
            timeout_ms=parse_timeout_ms(codex_data.get("timeout_ms")),
        ),
        sessions=SessionStoreConfig(
            index_path=str(Path(index_path).expanduser() if index_path else get_default_index_path()),
        ),
        logging=LoggingConfig(
            level=log_data.get("level"),
            verbose=log_data.get("verbose"),
            file=log_data.get("file"),
        ),
        extra={k: v for k, v in data.items() if k not in KNOWN_SECTIONS},
    )


def load_config(workspace_cwd: str | None = None, reload: bool = False) -> RelayConfig:
    """Build the config for a workspace from every layer.

    Args:
        workspace_cwd: Workspace directory; defaults to the process cwd, in
            which case the result is cached for get_config().
        reload: Ignore the cached process-cwd config.

    Raises:
        ConfigError: If a configured value is invalid.
    """
    global _cached_config

    if workspace_cwd is None and _cached_config is not None and not reload:
        return _cached_config

    cwd = os.path.abspath(workspace_cwd or os.getcwd())
    layers = []
    for path in get_config_paths(cwd):
        layer = load_yaml_file(path)
        if layer:
            _log.debug("Config layer %s", path)
            layers.append(layer)
    layers.append(env_overrides())

    config = dict_to_config(merge_configs(*layers), cwd)
    if workspace_cwd is None:
        _cached_config = config
    return config


def get_config() -> RelayConfig:
    """The process-cwd config, loaded on first use."""
    return _cached_config if _cached_config is not None else load_config()


def reset_config() -> None:
    """Drop the cached config (tests, or to pick up edited files)."""
    global _cached_config
    _cached_config = None
