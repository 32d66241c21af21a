"""Wire — in-process event bus between the session core and its observers.

The session core emits lifecycle, output and exit events on the wire;
observers (the WebSocket hub, the CLI, host integrations) register
callbacks and get back a handle that removes them again.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable, TYPE_CHECKING

if TYPE_CHECKING:
    from ptyhub.pty.session import SessionInfo

logger = logging.getLogger(__name__)

SessionUpdateCallback = Callable[["SessionInfo"], None]
RawOutputCallback = Callable[["SessionInfo", str], None]
ExitCallback = Callable[["SessionInfo", "int | None"], None]
SessionRemovedCallback = Callable[[str], None]


class EventType(enum.Enum):
    SESSION_UPDATE = "session_update"
    RAW_OUTPUT = "raw_output"
    EXIT = "exit"
    SESSION_REMOVED = "session_removed"


class Subscription:
    """Handle returned by ``Wire.on_*``; ``dispose()`` unregisters the callback.

    Also usable as a context manager.
    """

    def __init__(self, wire: Wire, event_type: EventType, callback: Callable[..., None]) -> None:
        self._wire = wire
        self._event_type = event_type
        self._callback = callback
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._wire._remove(self._event_type, self._callback)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()


class Wire:
    """Synchronous multi-observer broadcast.

    Callbacks run in registration order on the caller's thread, inside the
    same event loop turn as the emit. A failing callback is logged and does
    not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._callbacks: dict[EventType, list[Callable[..., None]]] = {t: [] for t in EventType}
        self._closed: bool = False

    def on_session_update(self, callback: SessionUpdateCallback) -> Subscription:
        """Called with the session's projection on every status change."""
        return self._add(EventType.SESSION_UPDATE, callback)

    def on_raw_output(self, callback: RawOutputCallback) -> Subscription:
        """Called with (session, chunk) for every output chunk."""
        return self._add(EventType.RAW_OUTPUT, callback)

    def on_exit(self, callback: ExitCallback) -> Subscription:
        """Called with (session, exit_code) once a session's process is gone."""
        return self._add(EventType.EXIT, callback)

    def on_session_removed(self, callback: SessionRemovedCallback) -> Subscription:
        """Called with the session id once its record has been removed."""
        return self._add(EventType.SESSION_REMOVED, callback)

    def send_session_update(self, session: SessionInfo) -> None:
        self._send(EventType.SESSION_UPDATE, session)

    def send_raw_output(self, session: SessionInfo, data: str) -> None:
        self._send(EventType.RAW_OUTPUT, session, data)

    def send_exit(self, session: SessionInfo, exit_code: int | None) -> None:
        self._send(EventType.EXIT, session, exit_code)

    def send_session_removed(self, session_id: str) -> None:
        self._send(EventType.SESSION_REMOVED, session_id)

    def listener_count(self, event_type: EventType) -> int:
        return len(self._callbacks[event_type])

    def _add(self, event_type: EventType, callback: Callable[..., None]) -> Subscription:
        self._callbacks[event_type].append(callback)
        return Subscription(self, event_type, callback)

    def _remove(self, event_type: EventType, callback: Callable[..., None]) -> None:
        callbacks = self._callbacks[event_type]
        if callback in callbacks:
            callbacks.remove(callback)

    def _send(self, event_type: EventType, *args: Any) -> None:
        """Deliver to every callback.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for callback in list(self._callbacks[event_type]):
            try:
                callback(*args)
            except Exception:
                logger.exception("Error in %s callback", event_type.value)

    def close(self) -> None:
        """Drop all callbacks and ignore further events."""
        self._closed = True
        for callbacks in self._callbacks.values():
            callbacks.clear()
