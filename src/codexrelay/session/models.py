"""Session data model and session key derivation."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class ChatMode(str, Enum):
    """Collaboration mode a conversation runs in."""

    DEFAULT = "default"
    PLAN = "plan"


@dataclass
class Session:
    """The active Codex thread bound to one conversation.

    A Session does not know its own key: the key is derived from the chat
    identity by session_key() and lives in the SessionStore.
    """

    thread_id: str
    mode: ChatMode
    model: str
    cwd: str
    title: str | None = None

    def with_mode(self, mode: ChatMode) -> Session:
        """Return a copy switched to another mode."""
        return replace(self, mode=mode)


def session_key(chat_type: str, chat_id: str, user_id: str) -> str:
    """Derive the session key for a chat participant.

    Direct chats collapse to the chat (one conversation per chat); every
    other chat type keeps one conversation per user inside the shared chat.

    Example:
        >>> session_key("p2p", "oc_1", "ou_9")
        'p2p:oc_1'
        >>> session_key("group", "oc_2", "ou_9")
        'group:oc_2:ou_9'
    """
    if chat_type == "p2p":
        return f"p2p:{chat_id}"
    return f"group:{chat_id}:{user_id}"
