"""CLI entry point for codex-relay."""

import sys


def main() -> int:
    """Main entry point for codex-relay CLI."""
    from codexrelay.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())
