"""Configuration management for codex-relay.

Provides hierarchical YAML-based configuration with:
- User-level config (~/.config/codexrelay/, ~/.codexrelay/ or %APPDATA%)
- Project-level config ($workspace/.codexrelay/)
- Environment variable overrides (highest priority)

Example usage:
    from codexrelay.config import load_config

    config = load_config(workspace_cwd="/path/to/project")
    print(config.codex.binary, config.codex.timeout_ms)
"""

from codexrelay.config.loader import (
    get_config,
    load_config,
    parse_timeout_ms,
    reset_config,
)
from codexrelay.config.paths import (
    get_config_paths,
    get_default_index_path,
    get_project_config_path,
    get_user_config_path,
    get_user_data_dir,
)
from codexrelay.config.schema import (
    CodexConfig,
    LoggingConfig,
    RelayConfig,
    SessionStoreConfig,
)

__all__ = [
    # Main API
    "get_config",
    "load_config",
    "parse_timeout_ms",
    "reset_config",
    # Paths
    "get_config_paths",
    "get_default_index_path",
    "get_project_config_path",
    "get_user_config_path",
    "get_user_data_dir",
    # Schema
    "CodexConfig",
    "LoggingConfig",
    "RelayConfig",
    "SessionStoreConfig",
]
