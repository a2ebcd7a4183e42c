"""Root pytest configuration for all tests."""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from codexrelay.codex.runner import CodexRunner
from codexrelay.config import reset_config
from codexrelay.rpc.transport import AppServerProcess

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)

FAKE_APP_SERVER = Path(__file__).parent / "fake_app_server.py"


@pytest.fixture(autouse=True)
def _clean_config(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep the developer's environment out of config resolution."""
    for name in ("CODEX_BIN", "CODEX_TIMEOUT_MS", "CODEX_RELAY_LOG"):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def workspace(tmp_path: Path) -> str:
    path = tmp_path / "workspace"
    path.mkdir()
    return str(path)


@dataclass
class FakeAppServer:
    """Builds runners and transports that talk to fake_app_server.py."""

    workspace: str
    record_file: Path
    transports: list[AppServerProcess] = field(default_factory=list)

    def command(self, scenario: str) -> list[str]:
        return [sys.executable, str(FAKE_APP_SERVER), scenario, str(self.record_file), self.workspace]

    def transport(self, scenario: str = "success") -> AppServerProcess:
        transport = AppServerProcess(self.command(scenario), cwd=self.workspace)
        self.transports.append(transport)
        return transport

    def runner(self, scenario: str = "success", timeout_ms: int | None = None) -> CodexRunner:
        def factory(command: Sequence[str], cwd: str) -> AppServerProcess:
            transport = AppServerProcess(command, cwd=cwd)
            self.transports.append(transport)
            return transport

        command = self.command(scenario)
        return CodexRunner(
            command[0],
            args=command[1:],
            timeout_ms=timeout_ms,
            transport_factory=factory,
        )

    def received(self) -> list[dict[str, Any]]:
        """Every message the fake read from its stdin, in order."""
        if not self.record_file.exists():
            return []
        lines = self.record_file.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [m for m in self.received() if m.get("method") == method]


@pytest.fixture
def fake_server(tmp_path: Path, workspace: str) -> FakeAppServer:
    return FakeAppServer(workspace=workspace, record_file=tmp_path / "received.jsonl")


