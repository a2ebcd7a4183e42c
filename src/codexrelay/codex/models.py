"""Codex app-server payload types.

Responses are validated with pydantic before use so a misbehaving or newer
app-server fails loudly with a ProtocolError instead of a KeyError deep in
the turn logic. Notification params are read leniently (see turn_state).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from codexrelay.session.models import ChatMode

CLIENT_NAME = "codex-relay"
CLIENT_TITLE = "Codex Relay"

DEFAULT_APPROVAL_POLICY = "on-request"
DEFAULT_SANDBOX = "workspace-write"


class CodexModel(BaseModel):
    """Base model for app-server payloads; unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")


class ThreadInfo(CodexModel):
    id: str


class ThreadResult(CodexModel):
    """Result of thread/start and thread/resume."""

    thread: ThreadInfo
    model: str
    cwd: str = ""


class CollaborationModeMask(CodexModel):
    """One entry of collaborationMode/list."""

    name: str
    mode: Literal["default", "plan"] | None
    model: str | None = None
    reasoning_effort: str | None
    developer_instructions: str | None


class CollaborationModeList(CodexModel):
    data: list[CollaborationModeMask]


@dataclass(frozen=True)
class OpenThread:
    """Thread identity as reported by the app-server."""

    thread_id: str
    cwd: str
    model: str


@dataclass(frozen=True)
class TurnResult:
    """Outcome of a successful run_turn()."""

    thread_id: str
    model: str
    mode: ChatMode
    message: str
    cwd: str


def initialize_params(version: str) -> dict[str, Any]:
    return {
        "clientInfo": {"name": CLIENT_NAME, "title": CLIENT_TITLE, "version": version},
        "capabilities": {"experimentalApi": True},
    }


def text_input(text: str) -> dict[str, Any]:
    """A single text input block for turn/start."""
    return {"type": "text", "text": text, "text_elements": []}
