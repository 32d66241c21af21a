"""Subscription hub — fans session output and lifecycle events out to viewers."""

from __future__ import annotations

import asyncio
import itertools
import logging

from ptyhub.errors import PtyHubError, SessionNotFoundError
from ptyhub.pty.manager import SessionService
from ptyhub.pty.session import SessionInfo
from ptyhub.web.protocol import (
    ClientMessage,
    ErrorMessage,
    InputRequest,
    RawDataMessage,
    ReadRawRequest,
    ReadRawResponse,
    SessionListMessage,
    SessionListRequest,
    SessionUpdateMessage,
    SpawnRequest,
    SubscribedMessage,
    SubscribeRequest,
    UnsubscribedMessage,
    UnsubscribeRequest,
    parse_client_message,
)

logger = logging.getLogger(__name__)


class Viewer:
    """One connected viewer.

    Outgoing frames are queued synchronously so a fan-out reaches every
    viewer within the same loop turn; the transport drains ``outbox`` and
    stops at the ``None`` sentinel.
    """

    _ids = itertools.count(1)

    def __init__(self) -> None:
        self.id: int = next(self._ids)
        self.subscriptions: set[str] = set()
        self.outbox: asyncio.Queue[str | None] = asyncio.Queue()

    def push(self, frame: str) -> None:
        self.outbox.put_nowait(frame)

    def close(self) -> None:
        self.outbox.put_nowait(None)

    def __repr__(self) -> str:
        return f"Viewer({self.id})"


class SubscriptionHub:
    """Tracks viewers and who wants which session's output.

    Every connected viewer receives every ``session_update``. ``raw_data``
    only reaches viewers subscribed to that session, found through a
    per-session index so fan-out cost scales with subscribers rather than
    connections.
    """

    def __init__(self, service: SessionService) -> None:
        self._service = service
        self._viewers: dict[int, Viewer] = {}
        self._subscribers: dict[str, dict[int, Viewer]] = {}
        self._wire_subscriptions = [
            service.on_session_update(self.broadcast_update),
            service.on_raw_output(self.broadcast_raw),
            service.on_session_removed(self.drop_session),
        ]

    @property
    def connection_count(self) -> int:
        return len(self._viewers)

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def connect(self) -> Viewer:
        """Register a new viewer; it joins the lifecycle channel immediately."""
        viewer = Viewer()
        self._viewers[viewer.id] = viewer
        logger.info("Viewer %d connected (%d total)", viewer.id, len(self._viewers))
        return viewer

    def disconnect(self, viewer: Viewer) -> None:
        """Drop a viewer from the lifecycle channel and every subscriber set."""
        if self._viewers.pop(viewer.id, None) is None:
            return
        for session_id in viewer.subscriptions:
            self._remove_subscriber(session_id, viewer)
        viewer.subscriptions.clear()
        viewer.close()
        logger.info("Viewer %d disconnected (%d left)", viewer.id, len(self._viewers))

    def close(self) -> None:
        for subscription in self._wire_subscriptions:
            subscription.dispose()
        for viewer in list(self._viewers.values()):
            self.disconnect(viewer)

    # -----------------------------------------------------------------------
    # Fan-out
    # -----------------------------------------------------------------------

    def broadcast_raw(self, session: SessionInfo, data: str) -> None:
        subscribers = self._subscribers.get(session.id)
        if not subscribers:
            return
        frame = RawDataMessage(session=session, raw_data=data).to_frame()
        for viewer in subscribers.values():
            viewer.push(frame)

    def broadcast_update(self, session: SessionInfo) -> None:
        if not self._viewers:
            return
        frame = SessionUpdateMessage(session=session).to_frame()
        for viewer in self._viewers.values():
            viewer.push(frame)

    def drop_session(self, session_id: str) -> None:
        """Forget every subscription to a session whose record was removed."""
        subscribers = self._subscribers.pop(session_id, None)
        if subscribers is None:
            return
        for viewer in subscribers.values():
            viewer.subscriptions.discard(session_id)

    # -----------------------------------------------------------------------
    # Client messages
    # -----------------------------------------------------------------------

    async def handle_message(self, viewer: Viewer, text: str | bytes) -> None:
        """Handle one client frame; failures become ``error`` frames.

        The connection always stays usable after an error.
        """
        try:
            message = parse_client_message(text)
            await self._dispatch(viewer, message)
        except PtyHubError as e:
            logger.debug("Viewer %d: %s", viewer.id, e)
            viewer.push(ErrorMessage.from_exception(e).to_frame())
        except Exception as e:
            logger.exception("Viewer %d: error handling message", viewer.id)
            viewer.push(ErrorMessage.from_exception(PtyHubError(f"Internal error: {e}")).to_frame())

    async def _dispatch(self, viewer: Viewer, message: ClientMessage) -> None:
        if isinstance(message, SubscribeRequest):
            if self._service.get(message.session_id) is None:
                raise SessionNotFoundError(message.session_id)
            self._subscribe(viewer, message.session_id)
            viewer.push(SubscribedMessage(session_id=message.session_id).to_frame())

        elif isinstance(message, UnsubscribeRequest):
            self._unsubscribe(viewer, message.session_id)
            viewer.push(UnsubscribedMessage(session_id=message.session_id).to_frame())

        elif isinstance(message, SessionListRequest):
            viewer.push(SessionListMessage(sessions=self._service.list()).to_frame())

        elif isinstance(message, SpawnRequest):
            info = await self._service.spawn(message)
            # The viewer may have gone away while the process was launching
            if message.subscribe and viewer.id in self._viewers:
                self._subscribe(viewer, info.id)

        elif isinstance(message, InputRequest):
            if not self._service.write(message.session_id, message.data):
                raise SessionNotFoundError(message.session_id)

        elif isinstance(message, ReadRawRequest):
            buffer = self._service.get_raw_buffer(message.session_id)
            if buffer is None:
                raise SessionNotFoundError(message.session_id)
            viewer.push(
                ReadRawResponse(session_id=message.session_id, raw_data=buffer.raw).to_frame()
            )

    def _subscribe(self, viewer: Viewer, session_id: str) -> None:
        viewer.subscriptions.add(session_id)
        self._subscribers.setdefault(session_id, {})[viewer.id] = viewer

    def _unsubscribe(self, viewer: Viewer, session_id: str) -> None:
        viewer.subscriptions.discard(session_id)
        self._remove_subscriber(session_id, viewer)

    def _remove_subscriber(self, session_id: str, viewer: Viewer) -> None:
        subscribers = self._subscribers.get(session_id)
        if subscribers is None:
            return
        subscribers.pop(viewer.id, None)
        if not subscribers:
            del self._subscribers[session_id]
