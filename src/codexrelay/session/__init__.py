"""Session model, persisted index, and per-key session store."""

from codexrelay.session.models import ChatMode, Session, session_key
from codexrelay.session.storage import (
    INDEX_VERSION,
    SessionIndex,
    SessionRecord,
    WorkspaceSessions,
    workspace_key,
    write_json_atomic,
)
from codexrelay.session.store import SessionStore

__all__ = [
    "INDEX_VERSION",
    "ChatMode",
    "Session",
    "SessionIndex",
    "SessionRecord",
    "SessionStore",
    "WorkspaceSessions",
    "session_key",
    "workspace_key",
    "write_json_atomic",
]
