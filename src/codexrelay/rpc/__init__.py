"""JSON-RPC over stdio for the Codex app-server."""

from codexrelay.rpc.codec import (
    METHOD_NOT_FOUND,
    RpcErrorObject,
    RpcErrorResponse,
    RpcIncomingMessage,
    RpcNotification,
    RpcServerRequest,
    RpcSuccessResponse,
    format_error,
    format_request,
    parse_line,
    server_request_result,
)
from codexrelay.rpc.transport import AppServerProcess

__all__ = [
    "METHOD_NOT_FOUND",
    "AppServerProcess",
    "RpcErrorObject",
    "RpcErrorResponse",
    "RpcIncomingMessage",
    "RpcNotification",
    "RpcServerRequest",
    "RpcSuccessResponse",
    "format_error",
    "format_request",
    "parse_line",
    "server_request_result",
]
