"""Chat-facing operations on top of the session store and Codex runner.

RelayHandler turns one piece of chat input into a reply string. Every
operation derives the session key from the chat and runs under that key's
lock, so a conversation sees its operations strictly in arrival order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from codexrelay.codex.runner import CodexRunner
from codexrelay.errors import CodexRelayError
from codexrelay.logging import get_logger
from codexrelay.session.models import ChatMode, Session, session_key
from codexrelay.session.store import SessionStore

log = get_logger("relay")

MAX_TITLE_LENGTH = 24
DEFAULT_TITLE = "New Session"

NO_SESSION_HINT = "No active session. Send a normal message or use new to create one."
NO_SESSION_MODE_HINT = "No active session. Send a normal message or use new to create one first."
CLEARED_REPLY = "Current session has been cleared."

TITLE_PROMPT = (
    "You are a session title generator.\n"
    "Generate a short English title based on the user message.\n"
    "Strict requirements:\n"
    "1. Output title text only, with no explanation.\n"
    "2. Output a single line with no line breaks.\n"
    "3. Do not use quotes.\n"
    f"4. Keep the title within {MAX_TITLE_LENGTH} characters."
)

_WRAPPING_QUOTES = (
    ('"', '"'),
    ("'", "'"),
    ("“", "”"),
    ("‘", "’"),
    ("「", "」"),
    ("《", "》"),
)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class IncomingText:
    """One message received from a chat."""

    chat_type: str  # "p2p" or "group"
    chat_id: str
    sender_id: str
    text: str

    @property
    def session_key(self) -> str:
        return session_key(self.chat_type, self.chat_id, self.sender_id)


def normalize_prompt(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def truncate_title(text: str) -> str:
    if len(text) <= MAX_TITLE_LENGTH:
        return text
    return text[: MAX_TITLE_LENGTH - 3] + "..."


def strip_wrapping_quotes(text: str) -> str:
    """Peel matching quote pairs off both ends until none remain."""
    value = text.strip()
    changed = True
    while changed and value:
        changed = False
        for left, right in _WRAPPING_QUOTES:
            if len(value) >= 2 and value.startswith(left) and value.endswith(right):
                value = value[len(left) : -len(right)].strip()
                changed = True
                break
    return value


def sanitize_title(raw: str) -> str | None:
    """Reduce model output to a one-line title, or None if nothing is left."""
    lines = raw.strip().splitlines()
    if not lines:
        return None
    title = strip_wrapping_quotes(normalize_prompt(lines[0]))
    return truncate_title(title) if title else None


def fallback_title(prompt: str) -> str:
    normalized = normalize_prompt(prompt)
    return truncate_title(normalized) if normalized else DEFAULT_TITLE


def build_title_prompt(prompt: str) -> str:
    return f"{TITLE_PROMPT}\n\nUser message: {normalize_prompt(prompt)}"


def describe_session(header: str, session: Session, *, include_title: bool = False) -> str:
    lines = [header, f"thread: {session.thread_id}"]
    if include_title:
        lines.append(f"title: {(session.title or '').strip() or DEFAULT_TITLE}")
    else:
        lines.append(f"cwd: {session.cwd}")
    lines.append(f"mode: {session.mode.value}")
    lines.append(f"model: {session.model}")
    return "\n".join(lines)


class RelayHandler:
    """Serves chat operations for one workspace.

    Example:
        handler = RelayHandler(store, CodexRunner.from_config(config.codex), "/repo")
        reply = await handler.prompt(IncomingText("p2p", "chat-1", "user-1", "hello"))
    """

    def __init__(self, store: SessionStore, runner: CodexRunner, workspace_cwd: str) -> None:
        self.store = store
        self.runner = runner
        self.workspace_cwd = workspace_cwd

    async def prompt(self, incoming: IncomingText) -> str | None:
        """Run a turn for the message and return the agent's reply.

        Returns None for blank text. Failures are reported in the reply and
        leave the stored session untouched.
        """
        text = incoming.text.strip()
        if not text:
            return None

        key = incoming.session_key

        async def run() -> str:
            current = self.store.get_session(key)
            mode = current.mode if current else ChatMode.DEFAULT
            try:
                result = await self.runner.run_turn(text, mode, current, self.workspace_cwd)
                title = await self._resolve_title(current, text, mode)
                self.store.set_session(
                    key,
                    Session(
                        thread_id=result.thread_id,
                        mode=result.mode,
                        model=result.model,
                        cwd=result.cwd,
                        title=title,
                    ),
                )
            except CodexRelayError as e:
                log.warning("Turn for %s failed: %s", key, e)
                return format_failure(e)
            return result.message

        return await self.store.with_session_lock(key, run)

    async def new_session(self, incoming: IncomingText, mode: ChatMode = ChatMode.DEFAULT) -> str:
        key = incoming.session_key

        async def run() -> str:
            try:
                created = await self.runner.create_thread(mode, self.workspace_cwd)
                self.store.set_session(key, created)
            except CodexRelayError as e:
                log.warning("Creating a session for %s failed: %s", key, e)
                return format_failure(e)
            return describe_session("Created a new session.", created)

        return await self.store.with_session_lock(key, run)

    async def set_mode(self, incoming: IncomingText, mode: ChatMode) -> str:
        key = incoming.session_key

        async def run() -> str:
            current = self.store.get_session(key)
            if current is None:
                return NO_SESSION_MODE_HINT
            self.store.set_session(key, current.with_mode(mode))
            return f"Switched to {mode.value} mode."

        return await self.store.with_session_lock(key, run)

    async def status(self, incoming: IncomingText) -> str:
        key = incoming.session_key

        async def run() -> str:
            current = self.store.get_session(key)
            if current is None:
                return NO_SESSION_HINT
            return describe_session("Current session status:", current, include_title=True)

        return await self.store.with_session_lock(key, run)

    async def reset(self, incoming: IncomingText) -> str:
        key = incoming.session_key

        async def run() -> str:
            self.store.clear_session(key)
            return CLEARED_REPLY

        return await self.store.with_session_lock(key, run)

    async def _resolve_title(self, current: Session | None, prompt: str, mode: ChatMode) -> str | None:
        if current is not None and current.title and current.title.strip():
            return current.title.strip()
        if current is None:
            return None

        try:
            generated = await self.runner.run_turn(
                build_title_prompt(prompt), mode, None, self.workspace_cwd
            )
        except CodexRelayError as e:
            log.warning("Title generation failed, using fallback: %s", e)
            return fallback_title(prompt)

        title = sanitize_title(generated.message)
        if title is None:
            log.warning("Generated title is empty, using fallback")
            return fallback_title(prompt)
        return title


def format_failure(error: Exception) -> str:
    message = str(error).strip()
    if message:
        return f"Codex execution failed: {message}"
    return "Codex execution failed. Please try again later."
