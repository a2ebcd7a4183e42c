"""Tests for the app-server process transport, against fake_app_server.py."""

from __future__ import annotations

import asyncio
import json

import pytest

from codexrelay.errors import RpcResponseError, TransportError
from codexrelay.rpc.codec import RpcNotification
from codexrelay.rpc.transport import AppServerProcess


async def _start_turn(transport: AppServerProcess, workspace: str) -> None:
    await transport.request("initialize", {})
    await transport.request("thread/start", {"cwd": workspace})
    await transport.request("turn/start", {"threadId": "thr-new", "input": []})


class TestRequests:
    """Test request/response correlation."""

    async def test_request_returns_result(self, fake_server) -> None:
        """Test that a response resolves the matching request."""
        async with fake_server.transport() as transport:
            result = await transport.request("initialize", {"clientInfo": {}})
        assert result == {"userAgent": "fake/0.0.0"}
        assert transport.exited

    async def test_request_ids_increase(self, fake_server) -> None:
        """Test that every request gets a fresh id."""
        async with fake_server.transport() as transport:
            await transport.request("initialize", {})
            await transport.request("collaborationMode/list", {})
        ids = [m["id"] for m in fake_server.received()]
        assert ids == [1, 2]

    async def test_error_response_raises(self, fake_server) -> None:
        """Test that an error response raises RpcResponseError."""
        async with fake_server.transport() as transport:
            with pytest.raises(RpcResponseError) as exc_info:
                await transport.request("thread/resume", {"threadId": "thr-missing"})
        assert exc_info.value.code == -32600
        assert exc_info.value.message == "thread not found: thr-missing"
        assert str(exc_info.value) == "Codex RPC error (-32600): thread not found: thr-missing"

    async def test_stdout_noise_ignored(self, fake_server) -> None:
        """Test that non-protocol lines and stale responses are dropped."""
        async with fake_server.transport("noise") as transport:
            result = await transport.request("initialize", {})
        assert result == {"userAgent": "fake/0.0.0"}

    async def test_request_before_start(self, fake_server) -> None:
        """Test that requests need a started process."""
        transport = fake_server.transport()
        with pytest.raises(TransportError, match="has not been started"):
            await transport.request("initialize", {})

    async def test_request_after_dispose(self, fake_server) -> None:
        """Test that a disposed transport refuses new requests."""
        transport = fake_server.transport()
        await transport.start()
        await transport.dispose()
        with pytest.raises(TransportError):
            await transport.request("initialize", {})


class TestNotificationsAndServerRequests:
    """Test traffic initiated by the app-server."""

    async def test_notifications_forwarded(self, fake_server, workspace: str) -> None:
        """Test that notifications reach the handler in order."""
        seen: list[RpcNotification] = []
        completed = asyncio.Event()

        def handler(notification: RpcNotification) -> None:
            seen.append(notification)
            if notification.method == "turn/completed":
                completed.set()

        async with fake_server.transport() as transport:
            transport.set_notification_handler(handler)
            await _start_turn(transport, workspace)
            await asyncio.wait_for(completed.wait(), timeout=10)

        assert [n.method for n in seen] == [
            "item/completed",
            "codex/event/task_complete",
            "turn/completed",
        ]

    async def test_handler_errors_do_not_stop_reading(self, fake_server, workspace: str) -> None:
        """Test that a failing notification handler is logged, not fatal."""
        completed = asyncio.Event()

        def handler(notification: RpcNotification) -> None:
            if notification.method == "turn/completed":
                completed.set()
            raise RuntimeError("handler bug")

        async with fake_server.transport() as transport:
            transport.set_notification_handler(handler)
            await _start_turn(transport, workspace)
            await asyncio.wait_for(completed.wait(), timeout=10)

    async def test_server_requests_answered(self, fake_server, workspace: str) -> None:
        """Test that server requests get the canned answers, unknown ones an error."""
        completed = asyncio.Event()

        def handler(notification: RpcNotification) -> None:
            if notification.method == "turn/completed":
                completed.set()

        async with fake_server.transport("server_requests") as transport:
            transport.set_notification_handler(handler)
            await _start_turn(transport, workspace)
            await asyncio.wait_for(completed.wait(), timeout=10)

        answers = {m["id"]: m for m in fake_server.received() if str(m.get("id", "")).startswith("srv-")}
        assert answers["srv-0"]["result"] == {
            "decision": "accept",
            "acceptSettings": {"forSession": True},
        }
        assert answers["srv-1"]["result"] == {"decision": "accept"}
        assert answers["srv-2"]["result"] == {"decision": "allow"}
        assert answers["srv-3"]["result"] == {"answers": {}}
        assert answers["srv-4"]["result"]["success"] is False
        assert answers["srv-5"]["error"]["code"] == -32601
        assert "unknown/method" in answers["srv-5"]["error"]["message"]


class TestProcessLifecycle:
    """Test spawn failures, crashes, and teardown."""

    async def test_spawn_failure(self, workspace: str) -> None:
        """Test that a missing binary raises TransportError."""
        transport = AppServerProcess(["definitely-not-a-codex-binary-xyz"], cwd=workspace)
        with pytest.raises(TransportError, match="Failed to start Codex app-server"):
            await transport.start()
        await transport.dispose()

    async def test_crash_fails_pending_request(self, fake_server, workspace: str) -> None:
        """Test that exit fails pending requests with code and stderr tail."""
        exit_errors: list[TransportError] = []

        async with fake_server.transport("crash") as transport:
            transport.set_exit_handler(exit_errors.append)
            with pytest.raises(TransportError) as exc_info:
                await _start_turn(transport, workspace)

        error = exc_info.value
        assert error.returncode == 3
        assert error.signal is None
        assert error.stderr_tail == "fatal: model exploded"
        assert str(error) == (
            "Codex app-server exited (code=3, signal=None); stderr: fatal: model exploded"
        )
        assert exit_errors and exit_errors[0].returncode == 3
        assert transport.stderr_tail == ["starting turn", "fatal: model exploded"]

    async def test_dispose_terminates_running_process(self, fake_server, workspace: str) -> None:
        """Test that dispose() stops a process that would otherwise run forever."""
        transport = fake_server.transport("hang")
        await transport.start()
        await _start_turn(transport, workspace)
        assert not transport.exited

        await transport.dispose()
        assert transport.exited
        assert transport._process is not None
        assert transport._process.returncode is not None

    async def test_dispose_is_idempotent(self, fake_server) -> None:
        """Test that dispose() can run more than once."""
        transport = fake_server.transport()
        await transport.start()
        await transport.dispose()
        await transport.dispose()
        assert transport.exited

    async def test_dispose_without_start(self, fake_server) -> None:
        """Test that disposing an unstarted transport is a no-op."""
        transport = fake_server.transport()
        await transport.dispose()
        with pytest.raises(TransportError):
            await transport.start()

    def test_empty_command_rejected(self, workspace: str) -> None:
        """Test that an empty command is a programming error."""
        with pytest.raises(ValueError):
            AppServerProcess([], cwd=workspace)


class _StalledStdin:
    """Child stdin whose buffer never drains."""

    def __init__(self) -> None:
        self.written: list[bytes] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        self.written.append(data)

    async def drain(self) -> None:
        await asyncio.Event().wait()

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True


class _StalledProcess:
    returncode = 0
    pid = 4242

    def __init__(self) -> None:
        self.stdin = _StalledStdin()


class TestServerRequestReplies:
    """Test that answering server requests never blocks the stdout reader."""

    async def test_full_stdin_does_not_stall_reader(self, workspace: str) -> None:
        """Test that a reply stuck in drain() leaves line handling free."""
        transport = AppServerProcess(["codex", "app-server"], cwd=workspace)
        process = _StalledProcess()
        transport._process = process
        line = json.dumps(
            {"jsonrpc": "2.0", "id": "srv-0", "method": "unknown/method", "params": {}}
        ).encode("utf-8") + b"\n"

        await asyncio.wait_for(transport._handle_line(line), timeout=1)
        await asyncio.sleep(0.01)

        assert [json.loads(data)["id"] for data in process.stdin.written] == ["srv-0"]
        assert len(transport._reply_tasks) == 1

        await transport.dispose()
        assert not transport._reply_tasks
        assert process.stdin.closed
