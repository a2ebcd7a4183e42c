"""Command-line interface for codex-relay.

Drives one relay operation per invocation against the session index, as a
chat front end would:

    codex-relay ask "explain the build"
    codex-relay --chat-type group --chat-id team --user-id alice new plan
    codex-relay status
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from codexrelay import __version__
from codexrelay.codex.runner import CodexRunner
from codexrelay.config import RelayConfig, load_config, parse_timeout_ms
from codexrelay.errors import CodexRelayError, ConfigError, SessionIndexError
from codexrelay.logging import get_logger, setup_logging
from codexrelay.relay import IncomingText, RelayHandler
from codexrelay.session.models import ChatMode
from codexrelay.session.store import SessionStore

log = get_logger("cli")

MODE_CHOICES = [mode.value for mode in ChatMode]


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="codex-relay",
        description="Relay chat messages to a Codex app-server, one session per conversation",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    parser.add_argument(
        "--cwd",
        type=Path,
        help="Workspace directory (default: current directory)",
    )
    parser.add_argument(
        "--chat-type",
        choices=["p2p", "group"],
        default="p2p",
        help="Kind of chat the message comes from",
    )
    parser.add_argument("--chat-id", default="cli", help="Chat identifier")
    parser.add_argument("--user-id", default="cli", help="Sender identifier")
    parser.add_argument(
        "--timeout-ms",
        help="Per-operation Codex timeout in milliseconds (0 disables)",
    )
    parser.add_argument(
        "--codex-bin",
        help="Codex executable (default: config or CODEX_BIN)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Operation")

    ask_parser = subparsers.add_parser("ask", help="Send a prompt to the current session")
    ask_parser.add_argument("text", nargs="+", help="Prompt text")

    new_parser = subparsers.add_parser("new", help="Create a new session")
    new_parser.add_argument("mode", nargs="?", choices=MODE_CHOICES, default=ChatMode.DEFAULT.value)

    mode_parser = subparsers.add_parser("mode", help="Switch the current session mode")
    mode_parser.add_argument("mode", choices=MODE_CHOICES)

    subparsers.add_parser("status", help="Show the current session")
    subparsers.add_parser("reset", help="Clear the current session")

    return parser


def apply_overrides(config: RelayConfig, parsed: argparse.Namespace) -> None:
    """Let command-line flags win over file and environment config."""
    if parsed.codex_bin:
        config.codex.binary = parsed.codex_bin
    if parsed.timeout_ms is not None:
        config.codex.timeout_ms = parse_timeout_ms(parsed.timeout_ms)
    if parsed.verbose:
        # -v = info, -vv = verbose, -vvv = trace
        config.logging.verbose = min(4, 1 + parsed.verbose)


async def dispatch(handler: RelayHandler, parsed: argparse.Namespace) -> str | None:
    """Run the selected operation and return the reply."""
    incoming = IncomingText(
        chat_type=parsed.chat_type,
        chat_id=parsed.chat_id,
        sender_id=parsed.user_id,
        text=" ".join(getattr(parsed, "text", None) or []),
    )

    if parsed.command == "ask":
        return await handler.prompt(incoming)
    if parsed.command == "new":
        return await handler.new_session(incoming, ChatMode(parsed.mode))
    if parsed.command == "mode":
        return await handler.set_mode(incoming, ChatMode(parsed.mode))
    if parsed.command == "status":
        return await handler.status(incoming)
    if parsed.command == "reset":
        return await handler.reset(incoming)
    raise ValueError(f"Unknown command: {parsed.command}")


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    console = Console(highlight=False)
    err_console = Console(stderr=True, highlight=False)

    try:
        config = load_config(workspace_cwd=str(parsed.cwd) if parsed.cwd else None)
        apply_overrides(config, parsed)
        setup_logging(config.logging)

        store = SessionStore()
        store.initialize(Path(config.sessions.index_path), config.workspace_cwd)
    except (ConfigError, SessionIndexError) as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}", soft_wrap=True)
        return 1

    log.debug("Workspace %s, codex command %s", config.workspace_cwd, config.codex.binary)
    handler = RelayHandler(store, CodexRunner.from_config(config.codex), config.workspace_cwd)

    try:
        reply = asyncio.run(dispatch(handler, parsed))
    except CodexRelayError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}", soft_wrap=True)
        return 1

    if reply is not None:
        console.print(reply, markup=False, soft_wrap=True)
    return 0
