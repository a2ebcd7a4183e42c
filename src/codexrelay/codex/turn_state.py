"""Turn accumulator: folds app-server notifications into one turn outcome.

A turn is driven entirely by notifications arriving after turn/start:

    error                      -> settled with an error
    item/completed (agentMessage) -> item-level candidate message
    codex/event/task_complete  -> task-level candidate message
    turn/completed             -> settled; error if the turn reports one

Candidate messages never settle the turn on their own. Once settled, the
accumulator stays settled; later notifications may still refresh the
candidates, but the resolved message prefers the task-level one, which the
app-server emits from the final task state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from codexrelay.logging import get_logger
from codexrelay.rpc.codec import RpcNotification

log = get_logger("codex")

ERROR_METHOD = "error"
ITEM_COMPLETED_METHOD = "item/completed"
TASK_COMPLETE_METHOD = "codex/event/task_complete"
TURN_COMPLETED_METHOD = "turn/completed"

UNKNOWN_ERROR_MESSAGE = "Codex returned an unknown error event"
TURN_FAILED_MESSAGE = "Codex turn failed"


@dataclass
class TurnAccumulator:
    """Per-turn state. One instance per run_turn() call."""

    turn_completed: bool = False
    turn_error: str | None = None
    last_agent_message_by_item: str | None = None
    last_agent_message_by_task: str | None = None

    def apply(self, notification: RpcNotification) -> None:
        """Apply one notification. Unknown methods are ignored."""
        method = notification.method
        params = notification.params

        if method == ERROR_METHOD:
            message = params.get("message") if isinstance(params, dict) else None
            self.turn_error = message if isinstance(message, str) else UNKNOWN_ERROR_MESSAGE
            self.turn_completed = True
            return

        if method in (ITEM_COMPLETED_METHOD, TASK_COMPLETE_METHOD):
            agent_message = extract_agent_message(notification)
            if agent_message is None:
                return
            if method == ITEM_COMPLETED_METHOD:
                self.last_agent_message_by_item = agent_message
            else:
                self.last_agent_message_by_task = agent_message
            return

        if method == TURN_COMPLETED_METHOD:
            self.turn_completed = True
            turn = _get_dict(params, "turn")
            error_message = _get_dict(turn, "error").get("message")
            if isinstance(error_message, str) and error_message:
                self.turn_error = error_message
            elif turn.get("status") == "failed":
                self.turn_error = TURN_FAILED_MESSAGE
            log.debug("Turn completed (status=%s)", turn.get("status"))

    def resolve_message(self) -> str | None:
        """The final message: task-level if seen, else item-level, else None."""
        if self.last_agent_message_by_task is not None:
            return self.last_agent_message_by_task
        return self.last_agent_message_by_item


def extract_agent_message(notification: RpcNotification) -> str | None:
    """Pull the agent message text out of a message-bearing notification."""
    if notification.method == ITEM_COMPLETED_METHOD:
        item = _get_dict(notification.params, "item")
        text = item.get("text")
        if item.get("type") == "agentMessage" and isinstance(text, str):
            return text
        return None

    if notification.method == TASK_COMPLETE_METHOD:
        message = _get_dict(notification.params, "msg").get("last_agent_message")
        return message if isinstance(message, str) else None

    return None


def _get_dict(value: Any, key: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    inner = value.get(key)
    return inner if isinstance(inner, dict) else {}
