"""Where codex-relay looks for config and keeps its session index.

User config, first match wins:
    %APPDATA%/codexrelay/config.yaml          (Windows only)
    $XDG_CONFIG_HOME/codexrelay/config.yaml
    ~/.config/codexrelay/config.yaml          (when ~/.config exists)
    ~/.codexrelay/config.yaml

Project config lives at <workspace>/.codexrelay/config.yaml. The session
index defaults to sessions.json in %APPDATA%/codexrelay or ~/.codexrelay.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
SESSIONS_FILENAME = "sessions.json"
APP_NAME = "codexrelay"
SHORT_NAME = ".codexrelay"


def _windows_app_dir() -> Path | None:
    root = os.environ.get("APPDATA")
    return Path(root) / APP_NAME if root else None


def _user_config_dir() -> Path | None:
    if sys.platform == "win32":
        return _windows_app_dir()

    xdg_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_home:
        return Path(xdg_home) / APP_NAME

    dot_config = Path.home() / ".config"
    return dot_config / APP_NAME if dot_config.exists() else Path.home() / SHORT_NAME


def get_user_config_path() -> Path | None:
    """The user-wide config file, or None on Windows without APPDATA."""
    directory = _user_config_dir()
    return directory / CONFIG_FILENAME if directory else None


def get_project_config_path(workspace_cwd: str) -> Path:
    return Path(workspace_cwd) / SHORT_NAME / CONFIG_FILENAME


def get_config_paths(workspace_cwd: str | None = None) -> list[Path]:
    """Candidate config files for merge_configs(), lowest priority first.

    The files need not exist; missing ones are skipped by the loader.
    """
    candidates = [get_user_config_path()]
    if workspace_cwd:
        candidates.append(get_project_config_path(workspace_cwd))
    return [path for path in candidates if path is not None]


def get_user_data_dir() -> Path:
    """Directory for state the relay writes (the session index)."""
    if sys.platform == "win32":
        app_dir = _windows_app_dir()
        if app_dir is not None:
            return app_dir
    return Path.home() / SHORT_NAME


def get_default_index_path() -> Path:
    """Default location of the persisted session index."""
    return get_user_data_dir() / SESSIONS_FILENAME
