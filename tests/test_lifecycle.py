"""Tests for ptyhub.pty.lifecycle (SessionRegistry) against real pseudo-terminals."""

from __future__ import annotations

import asyncio
import os
import re
import signal

import pytest

from conftest import WAIT_TIMEOUT, wait_until
from ptyhub.pty.lifecycle import (
    EXIT_CANNOT_EXECUTE,
    EXIT_COMMAND_NOT_FOUND,
    SessionRegistry,
    generate_id,
)
from ptyhub.pty.process import PtyProcess
from ptyhub.pty.session import Session, SessionStatus, SpawnOptions

ID_RE = re.compile(r"^pty_[0-9a-f]{8}$")


class _Recorder:
    def __init__(self) -> None:
        self.data: list[tuple[str, str]] = []
        self.exits: list[tuple[str, int | None]] = []

    def on_data(self, session: Session, data: str) -> None:
        self.data.append((session.id, data))

    def on_exit(self, session: Session, exit_code: int | None) -> None:
        self.exits.append((session.id, exit_code))


@pytest.fixture
async def registry():
    reg = SessionRegistry()
    yield reg
    sessions = reg.list_sessions()
    reg.clear_all_sessions()
    await asyncio.wait_for(asyncio.gather(*(s.wait() for s in sessions)), timeout=WAIT_TIMEOUT)


async def _spawn(registry: SessionRegistry, recorder: _Recorder, command: str, *args: str, **kwargs):
    opts = SpawnOptions(command=command, args=list(args), **kwargs)
    return await registry.spawn(opts, recorder.on_data, recorder.on_exit)


async def _wait_done(registry: SessionRegistry, session_id: str) -> Session:
    session = registry.get_session(session_id)
    assert session is not None
    await asyncio.wait_for(session.wait(), timeout=WAIT_TIMEOUT)
    return session


# ---------------------------------------------------------------------------
# Ids
# ---------------------------------------------------------------------------


class TestSessionIds:
    def test_generate_id_shape(self) -> None:
        for _ in range(50):
            assert ID_RE.match(generate_id())

    async def test_ids_unique(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        ids = {(await _spawn(registry, rec, "true")).id for _ in range(5)}
        assert len(ids) == 5
        assert all(ID_RE.match(i) for i in ids)


# ---------------------------------------------------------------------------
# Spawn and output
# ---------------------------------------------------------------------------


class TestSpawn:
    async def test_initial_projection(self, registry: SessionRegistry, tmp_path) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sleep", "5", workdir=str(tmp_path))
        assert info.status == SessionStatus.RUNNING
        assert info.pid > 0
        assert info.line_count == 0
        assert info.workdir == str(tmp_path)
        assert info.exit_code is None
        assert info.id in registry

    async def test_default_title(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sleep", "5")
        assert info.title == "sleep 5"

    async def test_explicit_title(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "true", title="My job", description="does nothing")
        assert info.title == "My job"
        assert info.description == "does nothing"

    async def test_output_lines_and_raw(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "printf", "line1\\nline2\\nline3\\n")
        session = await _wait_done(registry, info.id)

        assert session.status == SessionStatus.EXITED
        assert session.exit_code == 0
        assert session.buffer.read() == ["line1", "line2", "line3"]
        assert session.buffer.read_raw() == "line1\r\nline2\r\nline3\r\n"
        assert session.buffer.byte_length == 21
        assert "".join(d for _, d in rec.data) == "line1\r\nline2\r\nline3\r\n"

    async def test_echo_multiline_argument(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "echo", "line1\nline2\nline3")
        session = await _wait_done(registry, info.id)
        assert session.buffer.read() == ["line1", "line2", "line3"]
        assert session.buffer.read_raw() == "line1\r\nline2\r\nline3\r\n"
        assert session.buffer.byte_length == 21

    async def test_exit_code_reported(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sh", "-c", "exit 3")
        session = await _wait_done(registry, info.id)
        assert session.status == SessionStatus.EXITED
        assert session.exit_code == 3
        assert rec.exits == [(info.id, 3)]

    async def test_trailing_fragment_flushed_on_exit(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "printf", "done\\nprompt$ ")
        session = await _wait_done(registry, info.id)
        assert session.buffer.read() == ["done", "prompt$ "]

    async def test_output_before_exit_callback(self, registry: SessionRegistry) -> None:
        order: list[str] = []
        info = await registry.spawn(
            SpawnOptions(command="printf", args=["hello\\n"]),
            lambda s, d: order.append("data"),
            lambda s, c: order.append("exit"),
        )
        await _wait_done(registry, info.id)
        assert order[-1] == "exit"
        assert "data" in order

    async def test_env_and_term(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(
            registry, rec, "sh", "-c", 'printf "%s %s\\n" "$TERM" "$GREETING"', env={"GREETING": "hi"}
        )
        session = await _wait_done(registry, info.id)
        assert session.buffer.read() == ["xterm-256color hi"]

    async def test_input_reaches_process(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "head", "-n", "1")
        session = registry.get_session(info.id)
        assert session is not None and session.process is not None
        session.process.write("ping\n")
        await _wait_done(registry, info.id)
        assert "ping" in session.buffer.read()

    async def test_terminal_geometry(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "stty", "size")
        session = await _wait_done(registry, info.id)
        assert session.buffer.read() == ["40 120"]


class TestSpawnFailure:
    async def test_missing_command(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "definitely-not-a-real-command-xyz")
        assert info.status == SessionStatus.EXITED
        assert info.exit_code == EXIT_COMMAND_NOT_FOUND

        session = await _wait_done(registry, info.id)
        assert session.status == SessionStatus.EXITED
        assert session.exit_code == EXIT_COMMAND_NOT_FOUND
        assert rec.exits == [(info.id, EXIT_COMMAND_NOT_FOUND)]

    async def test_arguments_the_os_rejects(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        # Skips validation so the launch itself sees the NUL byte
        opts = SpawnOptions.model_construct(command="ab\x00c", args=[])
        info = await registry.spawn(opts, rec.on_data, rec.on_exit)
        assert info.status == SessionStatus.EXITED
        assert info.exit_code == EXIT_CANNOT_EXECUTE
        assert rec.exits == [(info.id, EXIT_CANNOT_EXECUTE)]
        assert info.id in registry


# ---------------------------------------------------------------------------
# Handler installation
# ---------------------------------------------------------------------------


class TestStartBeforeRead:
    async def _spawn_process(self) -> PtyProcess:
        return await PtyProcess.spawn(
            "sh",
            ["-c", "printf 'hello\\n'; sleep 0.5"],
            cwd=os.getcwd(),
            env=dict(os.environ),
            cols=120,
            rows=40,
        )

    async def test_output_waits_for_start(self) -> None:
        process = await self._spawn_process()
        chunks: list[str] = []
        exits: list[tuple[int | None, int | None]] = []

        await asyncio.sleep(0.2)
        assert process.started is False
        assert chunks == []

        process.start(chunks.append, lambda code, sig: exits.append((code, sig)))
        await asyncio.wait_for(process.wait(), timeout=WAIT_TIMEOUT)
        assert "".join(chunks) == "hello\r\n"
        assert exits == [(0, None)]

    async def test_start_twice_raises(self) -> None:
        process = await self._spawn_process()
        process.start(lambda data: None, lambda code, sig: None)
        with pytest.raises(RuntimeError, match="already started"):
            process.start(lambda data: None, lambda code, sig: None)
        await asyncio.wait_for(process.wait(), timeout=WAIT_TIMEOUT)


# ---------------------------------------------------------------------------
# Kill and cleanup
# ---------------------------------------------------------------------------


class TestKill:
    async def test_unknown_id(self, registry: SessionRegistry) -> None:
        assert registry.kill("pty_deadbeef") is False
        assert registry.kill("pty_deadbeef", cleanup=True) is False

    async def test_killing_then_killed(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sleep", "30")

        assert registry.kill(info.id) is True
        assert registry.get(info.id).status == SessionStatus.KILLING

        session = await _wait_done(registry, info.id)
        assert session.status == SessionStatus.KILLED
        assert session.exit_signal == signal.SIGKILL
        assert session.exit_code is None
        assert info.id in registry

    async def test_kill_twice(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sleep", "30")
        assert registry.kill(info.id) is True
        assert registry.kill(info.id) is True
        session = await _wait_done(registry, info.id)
        assert session.status == SessionStatus.KILLED

    async def test_kill_after_exit_keeps_status(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "true")
        await _wait_done(registry, info.id)
        assert registry.kill(info.id) is True
        assert registry.get(info.id).status == SessionStatus.EXITED

    async def test_kill_reaches_process_group(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sh", "-c", "sleep 30 & sleep 30; wait")
        registry.kill(info.id)
        session = await _wait_done(registry, info.id)
        assert session.status == SessionStatus.KILLED

    async def test_cleanup_removes_record(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sleep", "30")
        session = registry.get_session(info.id)
        assert session is not None

        assert registry.kill(info.id, cleanup=True) is True
        assert registry.get(info.id) is None
        assert info.id not in registry
        assert session.buffer.length == 0

        await asyncio.wait_for(session.wait(), timeout=WAIT_TIMEOUT)
        # Removed sessions finish quietly
        assert session.status == SessionStatus.KILLED
        assert rec.exits == []

    async def test_cleanup_by_session(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        a = await _spawn(registry, rec, "sleep", "30", parent_session_id="parent-a")
        b = await _spawn(registry, rec, "sleep", "30", parent_session_id="parent-a")
        c = await _spawn(registry, rec, "sleep", "30", parent_session_id="parent-b")

        registry.cleanup_by_session("parent-a")

        assert a.id not in registry
        assert b.id not in registry
        assert c.id in registry

    async def test_cleanup_by_unknown_parent(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sleep", "30", parent_session_id="parent-a")
        registry.cleanup_by_session("someone-else")
        assert info.id in registry

    async def test_clear_all(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        for _ in range(3):
            await _spawn(registry, rec, "sleep", "30")
        assert len(registry) == 3
        registry.clear_all_sessions()
        assert len(registry) == 0
        assert registry.list() == []

    async def test_output_after_cleanup_dropped(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sh", "-c", "sleep 0.2; echo late")
        session = registry.get_session(info.id)
        assert session is not None
        registry.kill(info.id, cleanup=True)
        await asyncio.wait_for(session.wait(), timeout=WAIT_TIMEOUT)
        assert rec.data == []


class TestListing:
    async def test_list_and_get(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        a = await _spawn(registry, rec, "sleep", "30")
        b = await _spawn(registry, rec, "sleep", "30")
        ids = [s.id for s in registry.list()]
        assert ids == [a.id, b.id]
        assert registry.get(a.id).id == a.id
        assert registry.get("pty_00000000") is None

    async def test_line_count_tracks_buffer(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "printf", "a\\nb\\n")
        await _wait_done(registry, info.id)
        await wait_until(lambda: registry.get(info.id).line_count == 2)


class TestResize:
    async def test_resize_changes_geometry(self, registry: SessionRegistry) -> None:
        rec = _Recorder()
        info = await _spawn(registry, rec, "sh", "-c", "read _; stty size")
        session = registry.get_session(info.id)
        assert session is not None and session.process is not None
        session.process.resize(cols=90, rows=20)
        session.process.write("\n")
        await _wait_done(registry, info.id)
        assert "20 90" in session.buffer.read()
