"""Exception hierarchy for codex-relay.

Every failure the core can surface to a caller derives from CodexRelayError,
so a chat-facing caller can catch one type and render its message:

- TransportError: the app-server process could not be spawned, written to,
  or exited while requests were outstanding
- RpcResponseError: the app-server answered a request with an RPC error
- ProtocolError: a response arrived but its payload has the wrong shape
- CollaborationModeUnavailable: the requested collaboration mode is not offered
- TurnError: the turn settled with an error or without a usable message
- CodexTimeoutError: the overall operation timeout fired
- SessionIndexError: the persisted session index is unreadable or invalid
- ConfigError: a configuration value is invalid
"""

from __future__ import annotations


class CodexRelayError(Exception):
    """Base class for all codex-relay errors."""

    pass


class TransportError(CodexRelayError):
    """The app-server process failed at the transport level.

    Attributes:
        returncode: Exit code of the process, if it exited normally.
        signal: Name of the terminating signal, if it was killed by one.
        stderr_tail: Last line captured from the process's stderr, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        returncode: int | None = None,
        signal: str | None = None,
        stderr_tail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.signal = signal
        self.stderr_tail = stderr_tail


class RpcResponseError(CodexRelayError):
    """An explicit JSON-RPC error response.

    The string form is the formatted "<kind> error (<code>): <message>".
    """

    def __init__(self, code: int, message: str, data: object = None) -> None:
        from codexrelay.rpc.codec import RpcErrorObject, format_error

        self.code = code
        self.message = message
        self.data = data
        super().__init__(format_error(RpcErrorObject(code=code, message=message, data=data)))


class ProtocolError(CodexRelayError):
    """A response payload did not match the expected shape."""

    pass


class CollaborationModeUnavailable(CodexRelayError):
    """No collaboration mode mask matches the requested mode."""

    def __init__(self, mode: str) -> None:
        super().__init__(f'Collaboration mode "{mode}" is unavailable')
        self.mode = mode


class TurnError(CodexRelayError):
    """The turn settled with an error, or produced no message."""

    pass


class CodexTimeoutError(CodexRelayError):
    """The overall create-thread / run-turn timeout elapsed."""

    def __init__(self, timeout_ms: int) -> None:
        super().__init__(f"Codex request timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class SessionIndexError(CodexRelayError):
    """The persisted session index failed to load or validate."""

    pass


class ConfigError(CodexRelayError):
    """A configuration value is invalid."""

    pass
