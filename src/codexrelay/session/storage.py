"""Session index persistence.

Sessions are persisted to a single JSON file (default
~/.codexrelay/sessions.json) shared by every workspace:

    {
      "version": 1,
      "updatedAt": "2026-01-17T10:30:00.000Z",
      "workspaces": {
        "/abs/workspace": {
          "activeBySessionKey": {"<session key>": <record>},
          "historyBySessionKey": {"<session key>": [<record>, ...]}
        }
      }
    }

A record is {sessionKey, threadId, mode, model, cwd, title?, savedAt}.
Active records are keyed by session key, one per key per workspace. History
is append-only: every save appends a copy, clearing never removes it.

The file is validated strictly on load. Anything unexpected raises
SessionIndexError rather than being repaired, so a damaged index stops the
relay at startup instead of silently losing sessions. Writes go to a temp
file in the same directory and are renamed over the target.

Only one process is expected to write the file.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from codexrelay.errors import SessionIndexError
from codexrelay.logging import get_logger
from codexrelay.session.models import ChatMode, Session

log = get_logger("session")

INDEX_VERSION = 1


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2026-01-17T10:30:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def workspace_key(cwd: str) -> str:
    """Normalize a workspace path into its index key."""
    return os.path.abspath(os.path.expanduser(cwd))


class SessionRecord(BaseModel):
    """One persisted session, as stored in the index."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_key: str = Field(alias="sessionKey")
    thread_id: str = Field(alias="threadId")
    mode: ChatMode
    model: str
    cwd: str
    title: str | None = None
    saved_at: str = Field(alias="savedAt")

    @classmethod
    def from_session(cls, key: str, session: Session, saved_at: str) -> SessionRecord:
        return cls(
            session_key=key,
            thread_id=session.thread_id,
            mode=session.mode,
            model=session.model,
            cwd=session.cwd,
            title=session.title,
            saved_at=saved_at,
        )

    def to_session(self) -> Session:
        return Session(
            thread_id=self.thread_id,
            mode=self.mode,
            model=self.model,
            cwd=self.cwd,
            title=self.title,
        )

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


@dataclass
class WorkspaceSessions:
    """Active and historical records for one workspace.

    Records are kept as plain JSON objects so workspaces that are not
    hydrated round-trip through a save unchanged.
    """

    active_by_session_key: dict[str, dict[str, Any]] = field(default_factory=dict)
    history_by_session_key: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "activeBySessionKey": self.active_by_session_key,
            "historyBySessionKey": self.history_by_session_key,
        }

    def copy(self) -> WorkspaceSessions:
        """Copy whose mappings and history lists can change independently."""
        return WorkspaceSessions(
            active_by_session_key=dict(self.active_by_session_key),
            history_by_session_key={
                key: list(records) for key, records in self.history_by_session_key.items()
            },
        )


@dataclass
class SessionIndex:
    """In-memory form of the session index file."""

    path: Path
    updated_at: str = field(default_factory=utc_timestamp)
    workspaces: dict[str, WorkspaceSessions] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> SessionIndex:
        """Load the index, creating an empty one first if the file is missing.

        Raises:
            SessionIndexError: If the file is not valid JSON or not a valid index.
        """
        ensure_index_file(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise SessionIndexError(f"Failed to read session index {path}: {e}") from e

        try:
            data = json.loads(text)
        except ValueError as e:
            raise SessionIndexError(f"Invalid JSON in session index {path}: {e}") from e

        index = cls.from_json(path, data)
        log.debug("Loaded session index %s (%d workspaces)", path, len(index.workspaces))
        return index

    @classmethod
    def from_json(cls, path: Path, data: Any) -> SessionIndex:
        """Validate parsed JSON and build the index.

        Raises:
            SessionIndexError: Naming the first offending field.
        """

        def fail(reason: str) -> SessionIndexError:
            return SessionIndexError(f"Invalid session index {path}: {reason}")

        if not isinstance(data, dict):
            raise fail("root must be an object")
        version = data.get("version")
        if not isinstance(version, int) or isinstance(version, bool) or version != INDEX_VERSION:
            raise fail(f"version must be {INDEX_VERSION}")
        updated_at = data.get("updatedAt")
        if not isinstance(updated_at, str):
            raise fail("updatedAt must be a string")
        workspaces_data = data.get("workspaces")
        if not isinstance(workspaces_data, dict):
            raise fail("workspaces must be an object")

        workspaces: dict[str, WorkspaceSessions] = {}
        for cwd, workspace_data in workspaces_data.items():
            label = f"workspaces[{json.dumps(cwd)}]"
            if not isinstance(workspace_data, dict):
                raise fail(f"{label} must be an object")

            active = workspace_data.get("activeBySessionKey")
            if not isinstance(active, dict):
                raise fail(f"{label}.activeBySessionKey must be an object")
            for key, record in active.items():
                if not isinstance(record, dict):
                    raise fail(f"{label}.activeBySessionKey[{json.dumps(key)}] must be an object")

            history = workspace_data.get("historyBySessionKey")
            if not isinstance(history, dict):
                raise fail(f"{label}.historyBySessionKey must be an object")
            for key, records in history.items():
                entry_label = f"{label}.historyBySessionKey[{json.dumps(key)}]"
                if not isinstance(records, list):
                    raise fail(f"{entry_label} must be an array")
                if not all(isinstance(record, dict) for record in records):
                    raise fail(f"{entry_label} must contain only objects")

            workspaces[cwd] = WorkspaceSessions(
                active_by_session_key=dict(active),
                history_by_session_key={key: list(records) for key, records in history.items()},
            )

        return cls(path=path, updated_at=updated_at, workspaces=workspaces)

    def to_json(self) -> dict[str, Any]:
        return _index_json(self.updated_at, self.workspaces)

    def active_records(self, cwd: str) -> dict[str, SessionRecord]:
        """Validated active records for a workspace, keyed by session key.

        Raises:
            SessionIndexError: If a record is malformed.
        """
        workspace = self.workspaces.get(workspace_key(cwd))
        if workspace is None:
            return {}

        records: dict[str, SessionRecord] = {}
        for key, raw in workspace.active_by_session_key.items():
            try:
                records[key] = SessionRecord.model_validate(raw)
            except ValidationError as e:
                raise SessionIndexError(
                    f"Invalid session index {self.path}: active record {json.dumps(key)} "
                    f"in workspace {json.dumps(workspace_key(cwd))} is malformed: {e}"
                ) from e
        return records

    def history(self, cwd: str, key: str) -> list[dict[str, Any]]:
        workspace = self.workspaces.get(workspace_key(cwd))
        if workspace is None:
            return []
        return list(workspace.history_by_session_key.get(key, []))

    def record_session(self, cwd: str, key: str, session: Session) -> SessionRecord:
        """Make session the active record for key and append it to history."""
        saved_at = utc_timestamp()
        record = SessionRecord.from_session(key, session, saved_at).to_json()

        cwd_key = workspace_key(cwd)
        current = self.workspaces.get(cwd_key)
        workspace = current.copy() if current is not None else WorkspaceSessions()
        workspace.active_by_session_key[key] = record
        workspace.history_by_session_key.setdefault(key, []).append(dict(record))
        self._commit(cwd_key, workspace, saved_at)
        return SessionRecord.model_validate(record)

    def remove_active(self, cwd: str, key: str) -> bool:
        """Drop the active record for key, keeping its history.

        Returns:
            True if a record was removed (and the index saved).
        """
        cwd_key = workspace_key(cwd)
        current = self.workspaces.get(cwd_key)
        if current is None or key not in current.active_by_session_key:
            return False

        workspace = current.copy()
        del workspace.active_by_session_key[key]
        self._commit(cwd_key, workspace, utc_timestamp())
        return True

    def _commit(self, cwd_key: str, workspace: WorkspaceSessions, updated_at: str) -> None:
        """Write the index with workspace replaced, then adopt it in memory.

        A failed write raises SessionIndexError and leaves the index as it was.
        """
        workspaces = {**self.workspaces, cwd_key: workspace}
        write_json_atomic(self.path, _index_json(updated_at, workspaces))
        self.workspaces = workspaces
        self.updated_at = updated_at
        log.debug("Saved session index %s", self.path)


def ensure_index_file(path: Path) -> None:
    """Create an empty index at path if nothing exists there yet."""
    if path.exists():
        return
    empty = {"version": INDEX_VERSION, "updatedAt": utc_timestamp(), "workspaces": {}}
    write_json_atomic(path, empty)
    log.info("Created session index %s", path)


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Serialize data to a temp file beside path, then rename it over path.

    Raises:
        SessionIndexError: If the directory or temp file cannot be created,
            or writing or renaming fails. The temp file is removed on a
            best-effort basis first.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as e:
        raise SessionIndexError(f"Failed to save session index {path}: {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, path)
    except (OSError, TypeError, ValueError) as e:
        with contextlib.suppress(OSError):
            os.unlink(temp_name)
        raise SessionIndexError(f"Failed to save session index {path}: {e}") from e


def _index_json(updated_at: str, workspaces: dict[str, WorkspaceSessions]) -> dict[str, Any]:
    return {
        "version": INDEX_VERSION,
        "updatedAt": updated_at,
        "workspaces": {cwd: ws.to_json() for cwd, ws in workspaces.items()},
    }
