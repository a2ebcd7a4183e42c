"""Scripted stand-in for `codex app-server`, spawned by the tests.

Usage: fake_app_server.py SCENARIO RECORD_FILE WORKSPACE

Every line received on stdin is appended to RECORD_FILE so tests can check
what the client sent, including its answers to server requests.
"""

from __future__ import annotations

import json
import sys

SCENARIO = sys.argv[1]
RECORD_FILE = sys.argv[2]
WORKSPACE = sys.argv[3]

MODEL = "gpt-test"

SERVER_REQUEST_METHODS = [
    "item/commandExecution/requestApproval",
    "item/fileChange/requestApproval",
    "execCommandApproval",
    "item/tool/requestUserInput",
    "item/tool/call",
    "unknown/method",
]


def send(payload: dict) -> None:
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


def notify(method: str, params: dict) -> None:
    send({"jsonrpc": "2.0", "method": method, "params": params})


def reply(msg_id, result) -> None:
    send({"jsonrpc": "2.0", "id": msg_id, "result": result})


def reply_error(msg_id, code: int, message: str) -> None:
    send({"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}})


def read_message() -> dict | None:
    line = sys.stdin.readline()
    if not line:
        return None
    with open(RECORD_FILE, "a", encoding="utf-8") as f:
        f.write(line if line.endswith("\n") else line + "\n")
    return json.loads(line)


def agent_message(text: str) -> None:
    notify("item/completed", {"item": {"type": "agentMessage", "id": "item-1", "text": text}})


def turn_completed(status: str = "completed", error: dict | None = None) -> None:
    turn: dict = {"id": "turn-1", "status": status}
    if error is not None:
        turn["error"] = error
    notify("turn/completed", {"threadId": "thr-new", "turn": turn})


def collaboration_modes() -> dict:
    masks = [
        {
            "name": "Default",
            "mode": "default",
            "model": None,
            "reasoning_effort": "medium",
            "developer_instructions": None,
        },
        {
            "name": "Plan",
            "mode": "plan",
            "model": None,
            "reasoning_effort": "high",
            "developer_instructions": "Plan before acting.",
        },
    ]
    if SCENARIO == "mode_missing":
        masks = masks[:1]
    return {"data": masks}


def run_turn(msg_id) -> None:
    if SCENARIO == "crash":
        sys.stderr.write("starting turn\n")
        sys.stderr.write("fatal: model exploded\n")
        sys.stderr.flush()
        sys.exit(3)

    reply(msg_id, {"turn": {"id": "turn-1", "status": "inProgress"}})

    if SCENARIO == "hang":
        while read_message() is not None:
            pass
        return

    if SCENARIO == "error_notification":
        notify("error", {"message": "boom"})
    elif SCENARIO == "failed_turn":
        turn_completed(status="failed")
    elif SCENARIO == "failed_with_error":
        turn_completed(status="failed", error={"message": "rate limited"})
    elif SCENARIO == "blank":
        agent_message("   ")
        turn_completed()
    elif SCENARIO == "item_only":
        agent_message("item reply")
        turn_completed()
    elif SCENARIO == "server_requests":
        for index, method in enumerate(SERVER_REQUEST_METHODS):
            send({"jsonrpc": "2.0", "id": f"srv-{index}", "method": method, "params": {}})
            read_message()
        agent_message("requests answered")
        turn_completed()
    else:
        agent_message("item reply")
        notify("codex/event/task_complete", {"msg": {"last_agent_message": "task reply"}})
        turn_completed()


def main() -> None:
    if SCENARIO == "noise":
        sys.stdout.write("booting fake app-server\n")
        sys.stdout.write("{not json}\n")
        reply(999, {"stale": True})
        sys.stdout.flush()

    while True:
        message = read_message()
        if message is None:
            return
        method = message.get("method")
        msg_id = message.get("id")
        params = message.get("params") or {}

        if method == "initialize":
            reply(msg_id, {"userAgent": "fake/0.0.0"})
        elif method == "collaborationMode/list":
            reply(msg_id, collaboration_modes())
        elif method == "thread/start":
            if SCENARIO == "invalid_thread":
                reply(msg_id, {"thread": {}})
            else:
                reply(msg_id, {"thread": {"id": "thr-new"}, "model": MODEL, "cwd": params.get("cwd")})
        elif method == "thread/resume":
            thread_id = params.get("threadId")
            if thread_id == "thr-missing":
                reply_error(msg_id, -32600, f"thread not found: {thread_id}")
            elif thread_id == "thr-broken":
                reply_error(msg_id, -32603, "resume exploded")
            elif thread_id == "thr-elsewhere":
                reply(msg_id, {"thread": {"id": thread_id}, "model": MODEL, "cwd": "/elsewhere"})
            else:
                reply(msg_id, {"thread": {"id": thread_id}, "model": MODEL, "cwd": WORKSPACE})
        elif method == "turn/start":
            run_turn(msg_id)
        elif msg_id is not None and method is not None:
            reply_error(msg_id, -32601, f"unknown method {method}")



if __name__ == "__main__":
    main()
