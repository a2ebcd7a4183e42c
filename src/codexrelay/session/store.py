"""Per-conversation session store with per-key serialization.

SessionStore keeps the active Session for every session key in memory and,
once initialize() has attached an index file, mirrors every change into the
persisted SessionIndex for the current workspace.

with_session_lock() serializes work per key: calls for the same key run one
at a time in arrival order, whether earlier calls succeeded or failed, while
calls for different keys run concurrently. A key's lock is dropped as soon as
nobody holds or waits for it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from codexrelay.logging import get_logger
from codexrelay.session.models import Session
from codexrelay.session.storage import SessionIndex, workspace_key

log = get_logger("session")

T = TypeVar("T")


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionStore:
    """Active sessions keyed by session key, optionally persisted.

    Example:
        store = SessionStore()
        store.initialize(Path("~/.codexrelay/sessions.json").expanduser(), "/repo")

        async def turn() -> str:
            session = store.get_session(key)
            ...
            store.set_session(key, updated)

        reply = await store.with_session_lock(key, turn)
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, _KeyLock] = {}
        self._index: SessionIndex | None = None
        self._workspace_cwd: str | None = None

    @property
    def persistent(self) -> bool:
        """True once an index file is attached."""
        return self._index is not None

    @property
    def workspace_cwd(self) -> str | None:
        return self._workspace_cwd

    @property
    def index(self) -> SessionIndex | None:
        return self._index

    def initialize(self, index_path: Path, workspace_cwd: str) -> None:
        """Attach the index file and hydrate the current workspace's sessions.

        Creates the file if it does not exist. Sessions of other workspaces
        stay on disk and are never loaded into memory.

        Raises:
            SessionIndexError: If the file or any active record is invalid.
        """
        index = SessionIndex.load(index_path)
        cwd = workspace_key(workspace_cwd)
        records = index.active_records(cwd)

        self._index = index
        self._workspace_cwd = cwd
        self._sessions = {key: record.to_session() for key, record in records.items()}
        log.info("Session store ready: %d active session(s) for %s", len(self._sessions), cwd)

    def reset(self) -> None:
        """Forget all sessions and locks and detach persistence."""
        self._sessions.clear()
        self._locks.clear()
        self._index = None
        self._workspace_cwd = None

    def get_session(self, key: str) -> Session | None:
        return self._sessions.get(key)

    def set_session(self, key: str, session: Session) -> None:
        """Make session the active session for key, persisting it if attached."""
        if self._index is not None and self._workspace_cwd is not None:
            self._index.record_session(self._workspace_cwd, key, session)
        self._sessions[key] = session

    def clear_session(self, key: str) -> None:
        """Remove the active session for key. Persisted history is kept."""
        if self._index is not None and self._workspace_cwd is not None:
            self._index.remove_active(self._workspace_cwd, key)
        self._sessions.pop(key, None)

    def active_keys(self) -> list[str]:
        return list(self._sessions)

    async def with_session_lock(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn() once every earlier call for the same key has finished.

        Args:
            key: Session key to serialize on.
            fn: Zero-argument coroutine function to run under the lock.

        Returns:
            Whatever fn() returns; its exceptions propagate unchanged.
        """
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                return await fn()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    def pending_lock_count(self) -> int:
        """Number of keys with a running or queued call."""
        return len(self._locks)
