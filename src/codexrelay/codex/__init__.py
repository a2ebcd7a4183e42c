"""Codex app-server turn orchestration."""

from codexrelay.codex.models import (
    CollaborationModeMask,
    OpenThread,
    ThreadResult,
    TurnResult,
)
from codexrelay.codex.runner import CodexRunner
from codexrelay.codex.thread import (
    get_collaboration_modes,
    initialize_client,
    is_thread_missing_error,
    open_thread,
    resume_thread,
    select_collaboration_mode,
    start_thread,
)
from codexrelay.codex.turn_state import TurnAccumulator, extract_agent_message

__all__ = [
    "CodexRunner",
    "CollaborationModeMask",
    "OpenThread",
    "ThreadResult",
    "TurnAccumulator",
    "TurnResult",
    "extract_agent_message",
    "get_collaboration_modes",
    "initialize_client",
    "is_thread_missing_error",
    "open_thread",
    "resume_thread",
    "select_collaboration_mode",
    "start_thread",
]
