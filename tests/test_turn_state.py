"""Tests for folding notifications into a turn outcome."""

from __future__ import annotations

from codexrelay.codex.turn_state import (
    TURN_FAILED_MESSAGE,
    UNKNOWN_ERROR_MESSAGE,
    TurnAccumulator,
    extract_agent_message,
)
from codexrelay.rpc.codec import RpcNotification


def item_completed(text: str, item_type: str = "agentMessage") -> RpcNotification:
    return RpcNotification("item/completed", {"item": {"type": item_type, "text": text}})


def task_complete(message: object) -> RpcNotification:
    return RpcNotification("codex/event/task_complete", {"msg": {"last_agent_message": message}})


def turn_completed(**turn: object) -> RpcNotification:
    return RpcNotification("turn/completed", {"turn": turn})


class TestMessages:
    """Test candidate message tracking."""

    def test_task_message_preferred_over_item(self) -> None:
        """Test that the task-level message wins whatever the order."""
        acc = TurnAccumulator()
        acc.apply(task_complete("from task"))
        acc.apply(item_completed("from item"))
        acc.apply(turn_completed(status="completed"))
        assert acc.turn_completed
        assert acc.turn_error is None
        assert acc.resolve_message() == "from task"

    def test_item_message_used_without_task(self) -> None:
        """Test fallback to the last item-level message."""
        acc = TurnAccumulator()
        acc.apply(item_completed("first"))
        acc.apply(item_completed("second"))
        assert acc.resolve_message() == "second"

    def test_non_agent_items_ignored(self) -> None:
        """Test that other item types do not count as messages."""
        acc = TurnAccumulator()
        acc.apply(item_completed("ls -la", item_type="commandExecution"))
        assert acc.resolve_message() is None

    def test_messages_do_not_settle_turn(self) -> None:
        """Test that candidate messages alone never complete the turn."""
        acc = TurnAccumulator()
        acc.apply(item_completed("hi"))
        acc.apply(task_complete("hi"))
        assert not acc.turn_completed

    def test_extract_agent_message(self) -> None:
        """Test extraction from both message-bearing notifications."""
        assert extract_agent_message(item_completed("a")) == "a"
        assert extract_agent_message(task_complete("b")) == "b"
        assert extract_agent_message(task_complete(None)) is None
        assert extract_agent_message(RpcNotification("item/completed", "junk")) is None
        assert extract_agent_message(RpcNotification("turn/started", {})) is None


class TestSettling:
    """Test how a turn settles."""

    def test_error_notification(self) -> None:
        """Test that an error notification settles with its message."""
        acc = TurnAccumulator()
        acc.apply(RpcNotification("error", {"message": "quota exceeded"}))
        assert acc.turn_completed
        assert acc.turn_error == "quota exceeded"

    def test_error_notification_without_message(self) -> None:
        """Test the generic message for an error event with no text."""
        acc = TurnAccumulator()
        acc.apply(RpcNotification("error", {"code": 1}))
        assert acc.turn_error == UNKNOWN_ERROR_MESSAGE

    def test_turn_error_message(self) -> None:
        """Test that turn.error.message becomes the turn error."""
        acc = TurnAccumulator()
        acc.apply(turn_completed(status="failed", error={"message": "rate limited"}))
        assert acc.turn_error == "rate limited"

    def test_failed_status_without_message(self) -> None:
        """Test the generic failure message for a failed status."""
        acc = TurnAccumulator()
        acc.apply(turn_completed(status="failed"))
        assert acc.turn_error == TURN_FAILED_MESSAGE

    def test_completed_without_turn_payload(self) -> None:
        """Test that a bare turn/completed still settles successfully."""
        acc = TurnAccumulator()
        acc.apply(RpcNotification("turn/completed", None))
        assert acc.turn_completed
        assert acc.turn_error is None

    def test_unknown_notifications_ignored(self) -> None:
        """Test that unrelated notifications change nothing."""
        acc = TurnAccumulator()
        acc.apply(RpcNotification("thread/tokenUsage/updated", {"total": 10}))
        assert acc == TurnAccumulator()
