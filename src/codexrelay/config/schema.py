"""Configuration schema dataclasses for codex-relay.

Defines the structure of configuration at all levels (user, project).
All fields have defaults so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class CodexConfig:
    """How to launch the Codex app-server.

    Example config.yaml:
        codex:
          binary: /usr/local/bin/codex
          args: [app-server]
          timeout_ms: 600000
    """

    binary: str = "codex"  # Executable name or path (CODEX_BIN)
    args: list[str] = field(default_factory=lambda: ["app-server"])
    timeout_ms: int | None = None  # Per-operation timeout (CODEX_TIMEOUT_MS); None = no timeout


@dataclass
class SessionStoreConfig:
    """Where the session index lives."""

    index_path: str | None = None  # Default: <user data dir>/sessions.json


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path (CODEX_RELAY_LOG)


@dataclass
class RelayConfig:
    """Root configuration object.

    workspace_cwd is not read from files: it is the directory the relay
    serves, taken from the caller (CLI --cwd or the process cwd).
    """

    workspace_cwd: str = ""
    codex: CodexConfig = field(default_factory=CodexConfig)
    sessions: SessionStoreConfig = field(default_factory=SessionStoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Unknown top-level sections, kept for forward compatibility
    extra: dict[str, Any] = field(default_factory=dict)
