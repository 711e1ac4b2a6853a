"""Pytest configuration and shared fixtures."""

import os
from typing import Any, List, Optional

import pytest
import pytest_asyncio

# Set test environment before importing config
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("SANDBOX_ENABLED", "false")
os.environ.setdefault("ENABLE_ACCESS_LOGS", "false")

from src.config.sandbox import SandboxConfig
from src.services import (
    OutputChannel,
    ProcessRegistry,
    RunOrchestrator,
    SessionStore,
    StopOrchestrator,
)
from src.services.sandbox import NsjailConfig


class RecordingTransport:
    """Stand-in for a websocket: records every JSON frame sent."""

    def __init__(self, fail_after: Optional[int] = None):
        self.sent: List[Any] = []
        self.fail_after = fail_after
        self.closed_with: Optional[int] = None

    async def send_json(self, data: Any) -> None:
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise ConnectionResetError("socket closed by peer")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code


class FakeProcess:
    """Minimal asyncio.subprocess.Process stand-in for registry tests."""

    def __init__(self, pid: int):
        self.pid = pid
        self.returncode = None
        self.kill_calls = 0

    def kill(self) -> None:
        self.kill_calls += 1


@pytest.fixture
def registry():
    """Process registry signalling whole process groups."""
    return ProcessRegistry(kill_process_group=True)


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def session(session_store):
    """A fresh session without an output channel."""
    return session_store.create("tester")


@pytest.fixture
def make_transport():
    """Factory for recording transports, optionally failing after N frames."""
    return RecordingTransport


@pytest.fixture
def make_process():
    """Factory for fake process handles."""
    return FakeProcess


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def channel(session_store, session, transport):
    """Output channel attached to ``session``, recording into ``transport``."""
    output_channel = OutputChannel(transport)
    session_store.attach_channel(session.session_id, output_channel)
    return output_channel


@pytest.fixture
def unsandboxed_config():
    return NsjailConfig(SandboxConfig(sandbox_enabled=False))


@pytest_asyncio.fixture
async def run_orchestrator(registry, session_store, unsandboxed_config):
    """RunOrchestrator spawning real children; runs are wound down after the test."""
    orchestrator = RunOrchestrator(
        registry=registry,
        sessions=session_store,
        nsjail_config=unsandboxed_config,
        stderr_css_class="stderr",
    )
    yield orchestrator
    await orchestrator.shutdown(timeout=5.0)


@pytest.fixture
def stop_orchestrator(registry, session_store):
    return StopOrchestrator(registry=registry, sessions=session_store)


@pytest.fixture
def make_executable(tmp_path):
    """Write a /bin/sh script into tmp_path and return its absolute path."""

    def _make(body: str, name: str = "prog", mode: int = 0o755) -> str:
        path = tmp_path / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        os.chmod(path, mode)
        return str(path)

    return _make
