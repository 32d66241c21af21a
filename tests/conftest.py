"""Shared fixtures for ptyhub tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import pytest

from ptyhub.config import PtyHubConfig
from ptyhub.pty.manager import SessionService

WAIT_TIMEOUT = 10.0


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep developer env vars and .env files out of config loading."""
    for name in ("PTYHUB_HOSTNAME", "PTYHUB_PORT", "PTYHUB_MAX_LINES", "PTYHUB_MAX_BYTES", "PTYHUB_TERM"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
async def service() -> AsyncIterator[SessionService]:
    svc = SessionService(PtyHubConfig())
    yield svc
    await svc.shutdown()


async def wait_until(predicate: Callable[[], bool], timeout: float = WAIT_TIMEOUT) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)
