"""PTY session — record, status machine and external projections."""

from __future__ import annotations

import asyncio
import enum
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ptyhub.pty.buffer import OutputBuffer
from ptyhub.pty.process import PtyProcess


class SessionStatus(enum.StrEnum):
    """Lifecycle states for a PTY session."""

    RUNNING = "running"
    KILLING = "killing"  # Kill requested, waiting for process to die
    KILLED = "killed"  # Terminated after a kill request
    EXITED = "exited"  # Process exited on its own


TERMINAL_STATUSES = frozenset({SessionStatus.KILLED, SessionStatus.EXITED})


@dataclass(frozen=True)
class Spawning:
    """Process launch in progress."""


@dataclass(frozen=True)
class Running:
    """Process alive (or dying) with its terminal attached."""

    process: PtyProcess


@dataclass(frozen=True)
class Terminated:
    """Process gone; only its exit information remains."""

    exit_code: int | None
    exit_signal: int | None


ProcessState = Spawning | Running | Terminated


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SpawnOptions(_CamelModel):
    """Parameters accepted by ``spawn``."""

    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    workdir: str | None = None
    env: dict[str, str] | None = None
    title: str | None = None
    description: str | None = None
    parent_session_id: str | None = None
    notify_on_exit: bool = False

    @field_validator("command")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Command is required")
        return value

    @field_validator("command", "workdir")
    @classmethod
    def _no_nul(cls, value: str | None) -> str | None:
        if value is not None and "\x00" in value:
            raise ValueError("must not contain NUL bytes")
        return value

    @field_validator("args")
    @classmethod
    def _no_nul_args(cls, value: list[str]) -> list[str]:
        if any("\x00" in arg for arg in value):
            raise ValueError("arguments must not contain NUL bytes")
        return value

    @field_validator("env")
    @classmethod
    def _no_nul_env(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        if value and any("\x00" in k or "\x00" in v for k, v in value.items()):
            raise ValueError("environment must not contain NUL bytes")
        return value


class SessionInfo(_CamelModel):
    """Immutable, handle-free view of a session, built fresh on every read."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    title: str
    description: str | None = None
    command: str
    args: tuple[str, ...]
    workdir: str
    status: SessionStatus
    exit_code: int | None = None
    exit_signal: int | None = None
    pid: int
    created_at: datetime
    line_count: int

    def to_json(self) -> dict:
        """camelCase dict as sent to web clients."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class Session:
    """A supervised pseudo-terminal session.

    Owns exactly one output buffer and one process state. Status only moves
    forward: running -> killing -> killed, or running -> exited.
    """

    id: str
    command: str
    args: list[str] = field(default_factory=list)
    workdir: str = field(default_factory=os.getcwd)
    env: dict[str, str] | None = None
    title: str = ""
    description: str | None = None
    parent_session_id: str | None = None
    notify_on_exit: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    buffer: OutputBuffer = field(default_factory=OutputBuffer)
    status: SessionStatus = SessionStatus.RUNNING
    state: ProcessState = field(default_factory=Spawning)
    pid: int = 0
    _done: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    @property
    def process(self) -> PtyProcess | None:
        if isinstance(self.state, Running):
            return self.state.process
        return None

    @property
    def exit_code(self) -> int | None:
        if isinstance(self.state, Terminated):
            return self.state.exit_code
        return None

    @property
    def exit_signal(self) -> int | None:
        if isinstance(self.state, Terminated):
            return self.state.exit_signal
        return None

    @property
    def alive(self) -> bool:
        return self.status == SessionStatus.RUNNING

    def attach(self, process: PtyProcess) -> None:
        if not isinstance(self.state, Spawning):
            raise RuntimeError(f"PTY session {self.id} already has a process")
        self.state = Running(process)
        self.pid = process.pid

    def mark_killing(self) -> bool:
        """Record a kill request. Only a running session can start killing."""
        if self.status != SessionStatus.RUNNING:
            return False
        self.status = SessionStatus.KILLING
        return True

    def finish(self, exit_code: int | None, exit_signal: int | None = None) -> bool:
        """Move to the terminal status. Returns False if already terminated."""
        if self.status in TERMINAL_STATUSES:
            return False
        self.buffer.flush()
        if self.status == SessionStatus.KILLING:
            self.status = SessionStatus.KILLED
        else:
            self.status = SessionStatus.EXITED
        self.state = Terminated(exit_code=exit_code, exit_signal=exit_signal)
        self._done.set()
        return True

    async def wait(self) -> None:
        """Wait until the session reaches killed or exited."""
        await self._done.wait()

    def to_info(self) -> SessionInfo:
        return SessionInfo(
            id=self.id,
            title=self.title,
            description=self.description,
            command=self.command,
            args=tuple(self.args),
            workdir=self.workdir,
            status=self.status,
            exit_code=self.exit_code,
            exit_signal=self.exit_signal,
            pid=self.pid,
            created_at=self.created_at,
            line_count=self.buffer.length,
        )
