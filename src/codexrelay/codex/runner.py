"""Turn orchestration against a fresh Codex app-server per call.

CodexRunner exposes the two operations the relay needs:

- create_thread(): handshake, start a thread, return a new Session
- run_turn(): handshake, pick the collaboration mode, open (resume or start)
  the thread, send the prompt, and wait for the turn to settle

Each call spawns its own app-server process and disposes it on the way out,
whatever the outcome. With a timeout configured, the whole call races the
timer; on expiry the pending turn is failed, the process is torn down, and
CodexTimeoutError is raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, TypeVar

from codexrelay.codex.models import OpenThread, TurnResult, text_input
from codexrelay.codex.thread import (
    get_collaboration_modes,
    initialize_client,
    open_thread,
    select_collaboration_mode,
    start_thread,
)
from codexrelay.codex.turn_state import TurnAccumulator
from codexrelay.errors import CodexTimeoutError, TransportError, TurnError
from codexrelay.logging import get_logger
from codexrelay.rpc.codec import RpcNotification
from codexrelay.rpc.transport import AppServerProcess
from codexrelay.session.models import ChatMode, Session

if TYPE_CHECKING:
    from codexrelay.config.schema import CodexConfig

log = get_logger("codex")

T = TypeVar("T")

DEFAULT_CODEX_BIN = "codex"
DEFAULT_CODEX_ARGS: tuple[str, ...] = ("app-server",)

NO_MESSAGE_ERROR = "Codex did not return a message"

TransportFactory = Callable[[Sequence[str], str], AppServerProcess]


def _default_transport(command: Sequence[str], cwd: str) -> AppServerProcess:
    return AppServerProcess(command, cwd=cwd)


class CodexRunner:
    """Runs create-thread and run-turn operations against the Codex app-server."""

    def __init__(
        self,
        binary: str = DEFAULT_CODEX_BIN,
        *,
        args: Sequence[str] = DEFAULT_CODEX_ARGS,
        timeout_ms: int | None = None,
        transport_factory: TransportFactory = _default_transport,
    ) -> None:
        """Initialize the runner.

        Args:
            binary: Path or name of the codex executable.
            args: Arguments that start the app-server.
            timeout_ms: Overall timeout per operation; None or <= 0 disables it.
            transport_factory: Builds the transport for a command and cwd.
        """
        self.binary = binary
        self.args = tuple(args)
        self.timeout_ms = timeout_ms if timeout_ms and timeout_ms > 0 else None
        self._transport_factory = transport_factory

    @classmethod
    def from_config(cls, config: CodexConfig) -> CodexRunner:
        return cls(config.binary, args=config.args, timeout_ms=config.timeout_ms)

    @property
    def command(self) -> list[str]:
        return [self.binary, *self.args]

    async def create_thread(self, mode: ChatMode, cwd: str) -> Session:
        """Start a new thread and return it as a Session in the given mode."""
        transport = self._transport_factory(self.command, cwd)

        async def run() -> Session:
            await transport.start()
            await initialize_client(transport)
            opened = await start_thread(transport, cwd)
            return Session(
                thread_id=opened.thread_id,
                mode=mode,
                model=opened.model,
                cwd=opened.cwd,
            )

        try:
            return await self._with_timeout(run(), on_timeout=None)
        finally:
            await transport.dispose()

    async def run_turn(
        self,
        prompt: str,
        mode: ChatMode,
        session: Session | None,
        cwd: str,
    ) -> TurnResult:
        """Run one turn and return the agent's final message.

        Args:
            prompt: User text sent as a single text input block.
            mode: Collaboration mode for this turn.
            session: Session to resume, or None to start a fresh thread.
            cwd: Workspace the thread must operate in.

        Raises:
            TurnError: If the turn fails or yields no message.
            CodexTimeoutError: If the configured timeout elapses.
            TransportError, RpcResponseError, ProtocolError,
            CollaborationModeUnavailable: From the underlying steps.
        """
        transport = self._transport_factory(self.command, cwd)
        accumulator = TurnAccumulator()
        turn_done: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def on_notification(notification: RpcNotification) -> None:
            accumulator.apply(notification)
            if accumulator.turn_completed and not turn_done.done():
                turn_done.set_result(None)

        def on_exit(error: TransportError) -> None:
            _fail(turn_done, error)

        def on_timeout() -> None:
            _fail(turn_done, TurnError("Codex execution timed out"))

        transport.set_notification_handler(on_notification)
        transport.set_exit_handler(on_exit)

        async def run() -> TurnResult:
            await transport.start()
            await initialize_client(transport)
            masks = await get_collaboration_modes(transport)
            opened: OpenThread = await open_thread(transport, session, cwd)
            collaboration_mode = select_collaboration_mode(masks, mode, opened.model)

            await transport.request(
                "turn/start",
                {
                    "threadId": opened.thread_id,
                    "input": [text_input(prompt)],
                    "collaborationMode": collaboration_mode,
                },
            )
            log.debug("Turn started on thread %s", opened.thread_id)

            await turn_done

            if accumulator.turn_error:
                log.info("Turn on thread %s failed: %s", opened.thread_id, accumulator.turn_error)
                raise TurnError(accumulator.turn_error)

            message = accumulator.resolve_message()
            if message is None or not message.strip():
                raise TurnError(NO_MESSAGE_ERROR)

            return TurnResult(
                thread_id=opened.thread_id,
                model=opened.model,
                mode=mode,
                message=message,
                cwd=opened.cwd,
            )

        try:
            return await self._with_timeout(run(), on_timeout=on_timeout)
        finally:
            transport.set_notification_handler(None)
            transport.set_exit_handler(None)
            await transport.dispose()

    async def _with_timeout(
        self,
        operation: Awaitable[T],
        on_timeout: Callable[[], None] | None,
    ) -> T:
        if self.timeout_ms is None:
            return await operation

        try:
            return await asyncio.wait_for(operation, timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            log.warning("Codex request timed out after %dms", self.timeout_ms)
            if on_timeout is not None:
                on_timeout()
            raise CodexTimeoutError(self.timeout_ms) from None


def _fail(future: asyncio.Future[None], error: Exception) -> None:
    if future.done():
        return
    future.set_exception(error)
    # Mark retrieved: the turn may already have failed elsewhere
    future.exception()
