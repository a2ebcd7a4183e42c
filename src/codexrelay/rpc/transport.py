"""Process transport: one Codex app-server child per logical operation.

The transport spawns the app-server, writes requests as JSON lines on its
stdin, and reads its stdout line by line:

- responses resolve the pending request with the matching id
- server requests (approval prompts, tool calls) are answered from a fixed
  policy, since no one can answer them interactively; each reply is written
  by its own task so the stdout reader never waits on stdin
- notifications are forwarded to the registered handler
- unparseable lines are dropped

When stdout reaches EOF the process exit is awaited and every request still
pending is failed with a TransportError naming the exit code or signal and
the last line the process wrote to stderr.

dispose() stops reading and terminates the child. It is idempotent and must
run on every exit path so no app-server outlives its operation.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal as signal_module
from collections import deque
from collections.abc import Callable, Sequence
from typing import Any

from codexrelay.errors import RpcResponseError, TransportError
from codexrelay.logging import TRACE, VERBOSE, get_logger
from codexrelay.rpc.codec import (
    METHOD_NOT_FOUND,
    RpcErrorResponse,
    RpcNotification,
    RpcRequestId,
    RpcServerRequest,
    RpcSuccessResponse,
    format_error_response,
    format_request,
    format_result,
    parse_line,
    server_request_result,
)

log = get_logger("rpc")

NotificationHandler = Callable[[RpcNotification], None]
ExitHandler = Callable[[TransportError], None]

# Generous line limit: agent messages and diffs arrive as single lines
STREAM_LIMIT = 16 * 1024 * 1024

# Seconds to wait for a graceful exit after SIGTERM before SIGKILL
TERMINATE_GRACE = 2.0

# Seconds to wait for stderr to drain after stdout closes
STDERR_DRAIN_TIMEOUT = 1.0

STDERR_TAIL_LINES = 20


class AppServerProcess:
    """JSON-RPC client bound to a single app-server child process.

    Example:
        process = AppServerProcess(["codex", "app-server"], cwd="/repo")
        await process.start()
        try:
            result = await process.request("initialize", {...})
        finally:
            await process.dispose()
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        cwd: str,
        env: dict[str, str] | None = None,
    ) -> None:
        """Create the transport. The process is not spawned until start().

        Args:
            command: Executable and arguments, e.g. ["codex", "app-server"].
            cwd: Working directory for the child process.
            env: Environment for the child; inherits ours when None.
        """
        if not command:
            raise ValueError("command must not be empty")
        self._command = list(command)
        self._cwd = cwd
        self._env = env

        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._reply_tasks: set[asyncio.Task[None]] = set()

        self._pending: dict[RpcRequestId, asyncio.Future[Any]] = {}
        self._next_id = 1
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._notification_handler: NotificationHandler | None = None
        self._exit_handler: ExitHandler | None = None

        self._exited = False
        self._disposed = False

    @property
    def exited(self) -> bool:
        """True once the child process has exited."""
        return self._exited

    @property
    def stderr_tail(self) -> list[str]:
        """Most recent stderr lines, oldest first."""
        return list(self._stderr_tail)

    def set_notification_handler(self, handler: NotificationHandler | None) -> None:
        """Register the callback that receives every notification."""
        self._notification_handler = handler

    def set_exit_handler(self, handler: ExitHandler | None) -> None:
        """Register a callback invoked once with the exit error when the child exits.

        Not called for exits caused by dispose().
        """
        self._exit_handler = handler

    async def start(self) -> None:
        """Spawn the child process and start reading its output.

        Raises:
            TransportError: If the process cannot be spawned.
        """
        if self._process is not None:
            return
        if self._disposed:
            raise TransportError("Codex app-server transport has been disposed")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env=self._env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            self._exited = True
            raise TransportError(f"Failed to start Codex app-server ({self._command[0]}): {e}") from e

        log.debug("Spawned %s (pid %d) in %s", " ".join(self._command), self._process.pid, self._cwd)
        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())

    async def request(self, method: str, params: Any) -> Any:
        """Send a request and wait for its response.

        Args:
            method: JSON-RPC method name.
            params: JSON-serializable params.

        Returns:
            The response's result member.

        Raises:
            TransportError: If the process is not running, the write fails,
                or the process exits before answering.
            RpcResponseError: If the app-server answers with an error.
        """
        process = self._process
        if process is None or process.stdin is None:
            raise TransportError("Codex app-server has not been started")
        if self._exited or self._disposed:
            raise self._exit_error(process.returncode)

        request_id = self._next_id
        self._next_id += 1

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            log.log(TRACE, "-> %s (id=%d)", method, request_id)
            try:
                process.stdin.write(format_request(request_id, method, params).encode("utf-8"))
                await process.stdin.drain()
            except (ConnectionError, OSError) as e:
                raise TransportError(f"Failed to write to Codex app-server: {e}") from e
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def dispose(self) -> None:
        """Stop reading and terminate the child if it is still running."""
        if self._disposed:
            return
        self._disposed = True

        for task in (self._reader_task, self._stderr_task, *self._reply_tasks):
            await _cancel_task(task)
        self._reply_tasks.clear()

        process = self._process
        if process is None:
            return

        if process.returncode is None:
            log.debug("Terminating Codex app-server (pid %d)", process.pid)
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=TERMINATE_GRACE)
            except asyncio.TimeoutError:
                log.warning("Codex app-server (pid %d) ignored SIGTERM, killing", process.pid)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        self._exited = True

    async def __aenter__(self) -> AppServerProcess:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()

    # -- reading ---------------------------------------------------------

    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout

        while True:
            try:
                line = await stdout.readline()
            except ValueError:
                # Line exceeded STREAM_LIMIT; the reader has discarded it
                log.warning("Dropped oversized line from Codex app-server")
                continue
            if not line:
                break
            await self._handle_line(line)

        await self._handle_exit()

    async def _read_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr

        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                continue
            if not line:
                break
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                self._stderr_tail.append(text)
                log.log(TRACE, "app-server stderr: %s", text)

    async def _handle_line(self, line: bytes) -> None:
        message = parse_line(line)
        if message is None:
            log.log(TRACE, "Dropped non-protocol line: %r", line[:200])
            return

        if isinstance(message, RpcServerRequest):
            # Answered off the read loop so a full stdin pipe cannot stall stdout
            task = asyncio.create_task(self._respond_to_server_request(message))
            self._reply_tasks.add(task)
            task.add_done_callback(self._reply_tasks.discard)
            return

        if isinstance(message, RpcNotification):
            self._dispatch_notification(message)
            return

        future = self._pending.get(message.id)
        if future is None or future.done():
            log.log(TRACE, "Response for unknown request id %r", message.id)
            return

        if isinstance(message, RpcErrorResponse):
            future.set_exception(
                RpcResponseError(message.error.code, message.error.message, message.error.data)
            )
        elif isinstance(message, RpcSuccessResponse):
            future.set_result(message.result)

    def _dispatch_notification(self, notification: RpcNotification) -> None:
        handler = self._notification_handler
        if handler is None:
            return
        try:
            handler(notification)
        except Exception:
            log.exception("Notification handler failed for %s", notification.method)

    async def _respond_to_server_request(self, request: RpcServerRequest) -> None:
        result = server_request_result(request.method)
        if result is not None:
            log.log(VERBOSE, "Auto-answering server request %s", request.method)
            line = format_result(request.id, result)
        else:
            log.warning("Unsupported server request method: %s", request.method)
            line = format_error_response(
                request.id, METHOD_NOT_FOUND, f"Unsupported server request method: {request.method}"
            )

        process = self._process
        if process is None or process.stdin is None or self._exited:
            return
        try:
            process.stdin.write(line.encode("utf-8"))
            await process.stdin.drain()
        except (ConnectionError, OSError) as e:
            # Recorded so it shows up in the exit error if the process dies
            self._stderr_tail.append(f'failed to respond to server request "{request.method}": {e}')
            log.warning("Failed to answer server request %s: %s", request.method, e)

    async def _handle_exit(self) -> None:
        assert self._process is not None
        returncode = await self._process.wait()

        # Give stderr a moment to drain so the tail includes the last words
        if self._stderr_task is not None and not self._stderr_task.done():
            await asyncio.wait({self._stderr_task}, timeout=STDERR_DRAIN_TIMEOUT)

        self._exited = True
        error = self._exit_error(returncode)
        log.debug("%s", error)

        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

        if self._exit_handler is not None:
            self._exit_handler(error)

    def _exit_error(self, returncode: int | None) -> TransportError:
        code: int | None = returncode
        signal_name: str | None = None
        if returncode is not None and returncode < 0:
            code = None
            try:
                signal_name = signal_module.Signals(-returncode).name
            except ValueError:
                signal_name = str(-returncode)

        tail = self._stderr_tail[-1] if self._stderr_tail else None
        message = f"Codex app-server exited (code={code}, signal={signal_name})"
        if tail:
            message += f"; stderr: {tail}"
        return TransportError(message, returncode=code, signal=signal_name, stderr_tail=tail)


async def _cancel_task(task: asyncio.Task[None] | None) -> None:
    if task is None:
        return
    if task.done():
        if not task.cancelled() and task.exception() is not None:
            log.debug("Reader task failed: %r", task.exception())
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
