"""Exit notifications sent to the parent session when a PTY process ends."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from ptyhub.config import NotificationConfig
from ptyhub.pty.formatters import truncate
from ptyhub.pty.session import Session

logger = logging.getLogger(__name__)

# Receives (parent_session_id, message) and delivers it upstream
NotifyHook = Callable[[str, str], Awaitable[None]]


class ExitNotifier:
    """Builds the ``<pty_exited>`` message and hands it to the host hook.

    Without a hook installed, notifications are silently skipped.
    """

    def __init__(self, config: NotificationConfig | None = None, hook: NotifyHook | None = None) -> None:
        self._config = config or NotificationConfig()
        self._hook = hook

    def set_hook(self, hook: NotifyHook | None) -> None:
        self._hook = hook

    @property
    def enabled(self) -> bool:
        return self._hook is not None

    async def send_exit_notification(self, session: Session, exit_code: int) -> None:
        if self._hook is None or not session.parent_session_id:
            return
        try:
            message = self.build_exit_notification(session, exit_code)
            await self._hook(session.parent_session_id, message)
        except Exception as e:
            logger.warning("Exit notification for %s failed: %s", session.id, e)

    def build_exit_notification(self, session: Session, exit_code: int) -> str:
        line_count = session.buffer.length
        last_line = ""
        # Walk back to the last line with visible content
        for i in range(line_count - 1, -1, -1):
            line = session.buffer.read(i, 1)[0]
            if line.strip():
                last_line = truncate(line, self._config.line_truncate)
                break

        display_title = session.description or session.title
        lines = [
            "<pty_exited>",
            f"ID: {session.id}",
            f"Description: {truncate(display_title, self._config.title_truncate)}",
            f"Exit Code: {exit_code}",
            f"Output Lines: {line_count}",
            f"Last Line: {last_line}",
            "</pty_exited>",
            "",
        ]
        if exit_code == 0:
            lines.append("Use pty_read to check the full output.")
        else:
            lines.append(
                "Process failed. Use pty_read with the pattern parameter to search for errors in the output."
            )
        return "\n".join(lines)
