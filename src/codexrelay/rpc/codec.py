"""Newline-delimited JSON-RPC codec for the Codex app-server.

Each line on the app-server's stdout is classified into exactly one of:
- RpcSuccessResponse: id + result
- RpcErrorResponse: id + error object {code, message}
- RpcNotification: method without a usable id
- RpcServerRequest: method with a numeric/string id

Anything else (diagnostic output, partial JSON, arrays, scalars) is dropped:
parse_line() returns None rather than raising, so a log line on stdout never
breaks a running turn.

Outgoing lines are compact JSON followed by a single newline.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

JSONRPC_VERSION = "2.0"

# JSON-RPC reserved error codes
METHOD_NOT_FOUND = -32601

RpcRequestId = Union[int, str]


@dataclass(frozen=True)
class RpcErrorObject:
    """The error member of a JSON-RPC error response."""

    code: int
    message: str
    data: Any = None


@dataclass(frozen=True)
class RpcSuccessResponse:
    """A response carrying a result."""

    id: RpcRequestId
    result: Any


@dataclass(frozen=True)
class RpcErrorResponse:
    """A response carrying an error object."""

    id: RpcRequestId
    error: RpcErrorObject


@dataclass(frozen=True)
class RpcNotification:
    """A server-to-client notification (no reply expected)."""

    method: str
    params: Any = None


@dataclass(frozen=True)
class RpcServerRequest:
    """A server-to-client request that must be answered."""

    id: RpcRequestId
    method: str
    params: Any = None


RpcIncomingMessage = Union[RpcSuccessResponse, RpcErrorResponse, RpcNotification, RpcServerRequest]


def is_request_id(value: Any) -> bool:
    """Check whether a value is usable as a JSON-RPC id (int or str, not bool)."""
    if isinstance(value, bool):
        return False
    return isinstance(value, (int, str))


def parse_error_object(value: Any) -> RpcErrorObject | None:
    """Parse an error member, or None if it lacks an int code and str message."""
    if not isinstance(value, dict):
        return None
    code = value.get("code")
    message = value.get("message")
    if isinstance(code, bool) or not isinstance(code, int) or not isinstance(message, str):
        return None
    return RpcErrorObject(code=code, message=message, data=value.get("data"))


def parse_line(line: str | bytes) -> RpcIncomingMessage | None:
    """Classify one line of app-server output.

    Args:
        line: A single line, with or without its trailing newline.

    Returns:
        The classified message, or None for anything that is not a
        recognizable JSON-RPC message.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError:
            return None

    try:
        data = json.loads(line)
    except ValueError:
        return None

    if not isinstance(data, dict):
        return None

    method = data.get("method")
    msg_id = data.get("id")
    params = data.get("params")

    if isinstance(method, str):
        if is_request_id(msg_id):
            return RpcServerRequest(id=msg_id, method=method, params=params)
        return RpcNotification(method=method, params=params)

    if not is_request_id(msg_id):
        return None

    if "error" in data:
        error = parse_error_object(data["error"])
        if error is not None:
            return RpcErrorResponse(id=msg_id, error=error)

    if "result" in data:
        return RpcSuccessResponse(id=msg_id, result=data["result"])

    return None


def format_error(error: RpcErrorObject, kind: str = "Codex RPC") -> str:
    """Format an RPC error object as "<kind> error (<code>): <message>"."""
    return f"{kind} error ({error.code}): {error.message}"


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False) + "\n"


def format_request(msg_id: RpcRequestId, method: str, params: Any) -> str:
    """Serialize a client request as one newline-terminated line."""
    return _dump({"jsonrpc": JSONRPC_VERSION, "id": msg_id, "method": method, "params": params})


def format_result(msg_id: RpcRequestId, result: Any) -> str:
    """Serialize a reply to a server request."""
    return _dump({"jsonrpc": JSONRPC_VERSION, "id": msg_id, "result": result})


def format_error_response(msg_id: RpcRequestId, code: int, message: str) -> str:
    """Serialize an error reply to a server request."""
    return _dump(
        {"jsonrpc": JSONRPC_VERSION, "id": msg_id, "error": {"code": code, "message": message}}
    )


TOOL_CALL_UNAVAILABLE_TEXT = "Dynamic tool calls are unavailable in codex-relay."


def server_request_result(method: str) -> dict[str, Any] | None:
    """Canned answer for a server request, keyed by method name.

    Nobody is around to answer approval prompts, so everything the app-server
    asks permission for is approved, user-input prompts get no answers, and
    dynamic tool calls are declined.

    Returns:
        The result payload, or None if the method is not supported.
    """
    if method == "item/commandExecution/requestApproval":
        return {"decision": "accept", "acceptSettings": {"forSession": True}}

    if method.endswith("/requestApproval"):
        return {"decision": "accept"}

    # execCommandApproval, applyPatchApproval and friends
    if method.endswith("Approval"):
        return {"decision": "allow"}

    if method == "item/tool/requestUserInput":
        return {"answers": {}}

    if method == "item/tool/call":
        return {
            "success": False,
            "contentItems": [{"type": "inputText", "text": TOOL_CALL_UNAVAILABLE_TEXT}],
        }

    return None
