"""Session service — the one surface collaborators use to drive PTY sessions."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from pydantic import ValidationError

from ptyhub.config import PtyHubConfig
from ptyhub.errors import InvalidInputError, describe_validation_error
from ptyhub.pty.formatters import strip_ansi
from ptyhub.pty.lifecycle import SessionRegistry
from ptyhub.pty.notification import ExitNotifier, NotifyHook
from ptyhub.pty.output import OutputFacade, PlainBuffer, RawBuffer, ReadResult, SearchResult
from ptyhub.pty.session import Session, SessionInfo, SessionStatus, SpawnOptions
from ptyhub.session.wire import (
    ExitCallback,
    RawOutputCallback,
    SessionRemovedCallback,
    SessionUpdateCallback,
    Subscription,
    Wire,
)

logger = logging.getLogger(__name__)

# Covers the kill plus the EOF grace period of every process
SHUTDOWN_TIMEOUT_SECONDS = 5.0


class SessionService:
    """Composes the registry, output facade, notifier and event wire.

    Construct one per process (or per test) and pass it to whatever needs
    it. Every status change is published as a session update on ``wire``;
    every output chunk as raw output.
    """

    def __init__(self, config: PtyHubConfig | None = None, notify_hook: NotifyHook | None = None) -> None:
        self.config = config or PtyHubConfig()
        self.wire = Wire()
        self._registry = SessionRegistry(terminal=self.config.terminal, buffer=self.config.buffer)
        self._output = OutputFacade(self._registry)
        self._notifier = ExitNotifier(self.config.notification, notify_hook)
        self._pending_notifications: set[asyncio.Task] = set()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def set_notify_hook(self, hook: NotifyHook | None) -> None:
        """Install the host hook that receives exit notifications."""
        self._notifier.set_hook(hook)

    def on_session_update(self, callback: SessionUpdateCallback) -> Subscription:
        return self.wire.on_session_update(callback)

    def on_raw_output(self, callback: RawOutputCallback) -> Subscription:
        return self.wire.on_raw_output(callback)

    def on_exit(self, callback: ExitCallback) -> Subscription:
        return self.wire.on_exit(callback)

    def on_session_removed(self, callback: SessionRemovedCallback) -> Subscription:
        return self.wire.on_session_removed(callback)

    async def spawn(self, options: SpawnOptions | dict[str, Any]) -> SessionInfo:
        """Spawn a session and announce it.

        Raises:
            InvalidInputError: If ``options`` fail validation. Nothing is
                spawned in that case.
        """
        if isinstance(options, SpawnOptions):
            opts = options
        else:
            try:
                opts = SpawnOptions.model_validate(options)
            except ValidationError as e:
                raise InvalidInputError(describe_validation_error(e)) from e

        info = await self._registry.spawn(opts, self._handle_data, self._handle_exit)
        # A failed launch was already announced by the exit handler
        if info.status == SessionStatus.RUNNING:
            self.wire.send_session_update(info)
        return info

    def _handle_data(self, session: Session, data: str) -> None:
        self.wire.send_raw_output(session.to_info(), data)

    def _handle_exit(self, session: Session, exit_code: int | None) -> None:
        info = session.to_info()
        self.wire.send_session_update(info)
        self.wire.send_exit(info, exit_code)
        if session.notify_on_exit and self._notifier.enabled:
            task = asyncio.get_running_loop().create_task(
                self._notifier.send_exit_notification(session, exit_code or 0)
            )
            self._pending_notifications.add(task)
            task.add_done_callback(self._pending_notifications.discard)

    def write(self, session_id: str, data: str) -> bool:
        return self._output.write(session_id, data)

    def read(self, session_id: str, offset: int = 0, limit: int | None = None) -> ReadResult | None:
        return self._output.read(session_id, offset, limit)

    def search(
        self,
        session_id: str,
        pattern: str | re.Pattern[str],
        offset: int = 0,
        limit: int | None = None,
    ) -> SearchResult | None:
        return self._output.search(session_id, pattern, offset, limit)

    def list(self) -> list[SessionInfo]:
        return self._registry.list()

    def get(self, session_id: str) -> SessionInfo | None:
        return self._registry.get(session_id)

    def get_raw_buffer(self, session_id: str) -> RawBuffer | None:
        session = self._registry.get_session(session_id)
        if session is None:
            return None
        return RawBuffer(raw=session.buffer.read_raw(), byte_length=session.buffer.byte_length)

    def get_plain_buffer(self, session_id: str) -> PlainBuffer | None:
        raw = self.get_raw_buffer(session_id)
        if raw is None:
            return None
        plain = strip_ansi(raw.raw)
        return PlainBuffer(plain=plain, byte_length=len(plain.encode("utf-8", errors="replace")))

    def kill(self, session_id: str, cleanup: bool = False) -> bool:
        """Kill a session; see ``SessionRegistry.kill``.

        Announces the ``killing`` status, or the removal when ``cleanup``
        is set.
        """
        session = self._registry.get_session(session_id)
        was_running = session is not None and session.alive
        if not self._registry.kill(session_id, cleanup):
            return False
        if cleanup:
            self.wire.send_session_removed(session_id)
        elif session is not None and was_running:
            self.wire.send_session_update(session.to_info())
        return True

    def cleanup_by_session(self, parent_session_id: str) -> None:
        """Host entry point: the parent session was deleted."""
        for session_id in self._registry.cleanup_by_session(parent_session_id):
            self.wire.send_session_removed(session_id)

    def clear_all_sessions(self) -> None:
        for session_id in self._registry.clear_all_sessions():
            self.wire.send_session_removed(session_id)

    async def wait(self, session_id: str, timeout: float | None = None) -> SessionInfo | None:
        """Wait for a session to reach killed or exited.

        Returns its final projection, or None if the id is unknown.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        session = self._registry.get_session(session_id)
        if session is None:
            return None
        await asyncio.wait_for(session.wait(), timeout=timeout)
        return session.to_info()

    async def shutdown(self, timeout: float = SHUTDOWN_TIMEOUT_SECONDS) -> None:
        """Kill every session and wait for the processes to exit.

        In-flight exit notifications are awaited as well.
        """
        sessions = self._registry.list_sessions()
        self.clear_all_sessions()
        if sessions:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(s.wait() for s in sessions)), timeout=timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Some PTY sessions did not exit within %.1fs", timeout)
        if self._pending_notifications:
            await asyncio.gather(*self._pending_notifications, return_exceptions=True)
        logger.info("All PTY sessions cleaned up")
