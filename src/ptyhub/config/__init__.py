"""Configuration — Pydantic models for ptyhub settings."""

from __future__ import annotations

import json
import os
import signal
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


class TerminalConfig(BaseModel):
    """Geometry and environment for newly spawned pseudo-terminals."""

    cols: int = Field(default=120, ge=1)
    rows: int = Field(default=40, ge=1)
    term: str = Field(default="xterm-256color", description="Value of TERM in the child")
    kill_signal: str = Field(
        default="SIGKILL",
        description="Signal sent to the process group when a session is killed",
    )

    @field_validator("kill_signal")
    @classmethod
    def _known_signal(cls, value: str) -> str:
        name = value.upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        if not hasattr(signal, name):
            raise ValueError(f"Unknown signal: {value}")
        return name

    @property
    def signum(self) -> int:
        return int(getattr(signal, self.kill_signal))


class BufferConfig(BaseModel):
    """Output buffer bounds. ``None`` keeps the buffer unbounded."""

    max_lines: int | None = Field(default=None, ge=1)
    max_bytes: int | None = Field(default=None, ge=1)


class ServerConfig(BaseModel):
    """Web transport settings."""

    host: str = Field(default="::1")
    port: int = Field(default=8765, ge=0, le=65535)


class NotificationConfig(BaseModel):
    """Limits applied to the exit notification text."""

    line_truncate: int = Field(default=250, ge=1)
    title_truncate: int = Field(default=64, ge=1)


class PtyHubConfig(BaseModel):
    """Top-level ptyhub configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    buffer: BufferConfig = Field(default_factory=BufferConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> PtyHubConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            PTYHUB_HOSTNAME   - Address the web transport binds to
            PTYHUB_PORT       - Port the web transport binds to (0 = ephemeral)
            PTYHUB_MAX_LINES  - Line index bound per session
            PTYHUB_MAX_BYTES  - Raw store bound per session
            PTYHUB_TERM       - TERM exported to spawned processes
        """
        load_dotenv()

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        server = config_data.get("server", {})
        env_host = os.environ.get("PTYHUB_HOSTNAME")
        if env_host:
            server["host"] = env_host
        env_port = os.environ.get("PTYHUB_PORT")
        if env_port:
            server["port"] = int(env_port)
        if server:
            config_data["server"] = server

        buffer = config_data.get("buffer", {})
        env_max_lines = os.environ.get("PTYHUB_MAX_LINES")
        if env_max_lines:
            buffer["max_lines"] = int(env_max_lines)
        env_max_bytes = os.environ.get("PTYHUB_MAX_BYTES")
        if env_max_bytes:
            buffer["max_bytes"] = int(env_max_bytes)
        if buffer:
            config_data["buffer"] = buffer

        env_term = os.environ.get("PTYHUB_TERM")
        if env_term:
            terminal = config_data.get("terminal", {})
            terminal["term"] = env_term
            config_data["terminal"] = terminal

        return cls.model_validate(config_data)
