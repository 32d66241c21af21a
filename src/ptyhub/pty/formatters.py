"""Text helpers for rendering sessions and buffer lines as prose."""

from __future__ import annotations

import re

from ptyhub.pty.session import SessionInfo

# CSI sequences, OSC strings (BEL or ST terminated) and two-byte escapes
_ANSI_RE = re.compile(r"\x1b(?:\[[0-?]*[ -/]*[@-~]|\][^\x07\x1b]*(?:\x07|\x1b\\)|[@-Z\\-_])")

DEFAULT_LINE_MAX_LENGTH = 2000


def strip_ansi(text: str) -> str:
    """Strip ANSI escape sequences from text."""
    return _ANSI_RE.sub("", text)


def truncate(text: str, max_length: int) -> str:
    return f"{text[:max_length]}..." if len(text) > max_length else text


def format_session_info(session: SessionInfo) -> list[str]:
    exit_info = f" | exit: {session.exit_code}" if session.exit_code is not None else ""
    exit_signal = f" | signal: {session.exit_signal}" if session.exit_signal else ""
    return [
        f"[{session.id}] {session.title}",
        f"  Command: {session.command} {' '.join(session.args)}".rstrip(),
        f"  Status: {session.status.value}{exit_info}{exit_signal}",
        f"  PID: {session.pid}",
        f"  Lines: {session.line_count}",
        f"  Workdir: {session.workdir}",
        f"  Created: {session.created_at.isoformat()}",
        "",
    ]


def format_line(line: str, line_num: int, max_length: int = DEFAULT_LINE_MAX_LENGTH) -> str:
    """Render one buffer line as ``00042| text``."""
    return f"{line_num:05d}| {truncate(line, max_length)}"
