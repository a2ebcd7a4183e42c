"""Codex Relay: chat conversations relayed to the Codex app-server."""

__version__ = "0.1.0"

# Public API
from codexrelay.codex import CodexRunner, TurnResult
from codexrelay.config import RelayConfig, load_config
from codexrelay.errors import (
    CodexRelayError,
    CodexTimeoutError,
    CollaborationModeUnavailable,
    ConfigError,
    ProtocolError,
    RpcResponseError,
    SessionIndexError,
    TransportError,
    TurnError,
)
from codexrelay.relay import IncomingText, RelayHandler
from codexrelay.session import ChatMode, Session, SessionStore, session_key

__all__ = [
    # Main entry points
    "RelayHandler",
    "IncomingText",
    "CodexRunner",
    "SessionStore",
    # Models
    "ChatMode",
    "Session",
    "TurnResult",
    "session_key",
    # Config
    "RelayConfig",
    "load_config",
    # Errors
    "CodexRelayError",
    "CodexTimeoutError",
    "CollaborationModeUnavailable",
    "ConfigError",
    "ProtocolError",
    "RpcResponseError",
    "SessionIndexError",
    "TransportError",
    "TurnError",
]
