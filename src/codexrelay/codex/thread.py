"""Thread lifecycle: handshake, start/resume, and collaboration mode selection."""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import ValidationError

from codexrelay import __version__
from codexrelay.codex.models import (
    DEFAULT_APPROVAL_POLICY,
    DEFAULT_SANDBOX,
    CollaborationModeList,
    CollaborationModeMask,
    OpenThread,
    ThreadResult,
    initialize_params,
)
from codexrelay.errors import CollaborationModeUnavailable, ProtocolError, RpcResponseError
from codexrelay.logging import get_logger
from codexrelay.session.models import ChatMode, Session

log = get_logger("codex")


class RpcClient(Protocol):
    """Anything that can issue a JSON-RPC request (AppServerProcess in production)."""

    async def request(self, method: str, params: Any) -> Any: ...


async def initialize_client(client: RpcClient) -> None:
    """Perform the initialize handshake."""
    await client.request("initialize", initialize_params(__version__))


async def get_collaboration_modes(client: RpcClient) -> list[CollaborationModeMask]:
    """Fetch the collaboration mode masks the app-server offers.

    Raises:
        ProtocolError: If the response is not a valid mode list.
    """
    raw = await client.request("collaborationMode/list", {})
    try:
        return CollaborationModeList.model_validate(raw).data
    except ValidationError as e:
        raise ProtocolError("Invalid collaboration mode response from Codex") from e


async def start_thread(client: RpcClient, cwd: str) -> OpenThread:
    """Start a fresh thread in cwd with the unattended approval/sandbox policy."""
    raw = await client.request(
        "thread/start",
        {
            "cwd": cwd,
            "approvalPolicy": DEFAULT_APPROVAL_POLICY,
            "sandbox": DEFAULT_SANDBOX,
            "experimentalRawEvents": False,
        },
    )
    opened = _parse_thread_result(raw, fallback_cwd=cwd)
    log.info("Started thread %s in %s", opened.thread_id, opened.cwd)
    return opened


async def resume_thread(client: RpcClient, thread_id: str) -> OpenThread:
    """Resume an existing thread.

    Raises:
        RpcResponseError: If the app-server rejects the resume, including
            when the thread no longer exists (see is_thread_missing_error).
    """
    raw = await client.request("thread/resume", {"threadId": thread_id})
    return _parse_thread_result(raw)


async def open_thread(client: RpcClient, session: Session | None, cwd: str) -> OpenThread:
    """Resume the session's thread when it is still valid for cwd, else start one.

    A fresh thread is started when there is no session, when the session
    belongs to another working directory, when the app-server no longer
    knows the thread, or when the resumed thread reports a different cwd.
    Any other resume failure propagates.
    """
    if session is None:
        return await start_thread(client, cwd)

    if session.cwd != cwd:
        log.info("Session cwd %s differs from %s, starting a new thread", session.cwd, cwd)
        return await start_thread(client, cwd)

    try:
        resumed = await resume_thread(client, session.thread_id)
    except RpcResponseError as e:
        if not is_thread_missing_error(e):
            raise
        log.info("Thread %s not found, starting a new thread", session.thread_id)
        return await start_thread(client, cwd)

    if resumed.cwd != cwd:
        log.info(
            "Resumed thread %s reports cwd %s, expected %s; starting a new thread",
            resumed.thread_id,
            resumed.cwd,
            cwd,
        )
        return await start_thread(client, cwd)

    log.debug("Resumed thread %s", resumed.thread_id)
    return resumed


def is_thread_missing_error(error: BaseException) -> bool:
    """True for the RPC error the app-server returns for an unknown thread."""
    return isinstance(error, RpcResponseError) and "not found" in error.message.lower()


def select_collaboration_mode(
    masks: list[CollaborationModeMask],
    mode: ChatMode | str,
    model: str,
) -> dict[str, Any]:
    """Build the collaborationMode payload for turn/start.

    Picks the first mask whose mode equals the requested mode, or whose name
    matches it case-insensitively, and combines it with the thread's model.

    Raises:
        CollaborationModeUnavailable: If no mask matches.

    Example:
        >>> mask = CollaborationModeMask(
        ...     name="Plan", mode="plan", reasoning_effort="high", developer_instructions=None
        ... )
        >>> select_collaboration_mode([mask], "plan", "gpt-x")
        {'mode': 'plan', 'settings': {'model': 'gpt-x', 'reasoning_effort': 'high', 'developer_instructions': None}}
    """
    mode_value = mode.value if isinstance(mode, ChatMode) else str(mode)

    selected = next(
        (mask for mask in masks if mask.mode == mode_value or mask.name.lower() == mode_value),
        None,
    )
    if selected is None:
        raise CollaborationModeUnavailable(mode_value)

    return {
        "mode": mode_value,
        "settings": {
            "model": model,
            "reasoning_effort": selected.reasoning_effort,
            "developer_instructions": selected.developer_instructions,
        },
    }


def _parse_thread_result(raw: Any, fallback_cwd: str | None = None) -> OpenThread:
    try:
        result = ThreadResult.model_validate(raw)
    except ValidationError as e:
        raise ProtocolError("Invalid thread response from Codex") from e
    return OpenThread(
        thread_id=result.thread.id,
        cwd=result.cwd or fallback_cwd or "",
        model=result.model,
    )
