"""Session registry — spawn, track, kill and clean up PTY sessions."""

from __future__ import annotations

import logging
import os
import secrets
from typing import Callable

from ptyhub.config import BufferConfig, TerminalConfig
from ptyhub.pty.buffer import OutputBuffer
from ptyhub.pty.process import PtyProcess
from ptyhub.pty.session import Session, SessionInfo, SpawnOptions

logger = logging.getLogger(__name__)

SESSION_ID_BYTE_LENGTH = 4
SESSION_ID_PREFIX = "pty_"

# Shell conventions for "not found" and "found but not executable"
EXIT_COMMAND_NOT_FOUND = 127
EXIT_CANNOT_EXECUTE = 126

DataCallback = Callable[[Session, str], None]
ExitCallback = Callable[[Session, "int | None"], None]


def generate_id() -> str:
    return f"{SESSION_ID_PREFIX}{secrets.token_hex(SESSION_ID_BYTE_LENGTH)}"


class SessionRegistry:
    """Owns the id -> session map and every status transition.

    All mutation happens on the event loop thread, so no locking is needed.
    A session stays registered after its process ends (status and buffer
    remain queryable) until it is removed by ``kill(cleanup=True)``,
    ``cleanup_by_session()`` or ``clear_all_sessions()``.
    """

    def __init__(
        self,
        terminal: TerminalConfig | None = None,
        buffer: BufferConfig | None = None,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._issued_ids: set[str] = set()
        self._terminal = terminal or TerminalConfig()
        self._buffer = buffer or BufferConfig()

    def _new_id(self) -> str:
        session_id = generate_id()
        while session_id in self._issued_ids:
            session_id = generate_id()
        self._issued_ids.add(session_id)
        return session_id

    def _create_session(self, opts: SpawnOptions) -> Session:
        session_id = self._new_id()
        title = opts.title or (
            f"{opts.command} {' '.join(opts.args)}".strip() or f"Terminal {session_id[-4:]}"
        )
        return Session(
            id=session_id,
            command=opts.command,
            args=list(opts.args),
            workdir=opts.workdir or os.getcwd(),
            env=opts.env,
            title=title,
            description=opts.description,
            parent_session_id=opts.parent_session_id,
            notify_on_exit=opts.notify_on_exit,
            buffer=OutputBuffer(
                max_lines=self._buffer.max_lines,
                max_bytes=self._buffer.max_bytes,
            ),
        )

    def _build_env(self, session: Session) -> dict[str, str]:
        return {**os.environ, "TERM": self._terminal.term, **(session.env or {})}

    async def spawn(
        self,
        opts: SpawnOptions,
        on_data: DataCallback,
        on_exit: ExitCallback,
    ) -> SessionInfo:
        """Launch a new session and register it.

        Args:
            opts: Validated spawn options.
            on_data: Called with (session, chunk) after each chunk is buffered.
            on_exit: Called with (session, exit_code) once the session has
                reached its final status.

        Returns:
            Projection of the registered session.
        """
        session = self._create_session(opts)

        try:
            process = await PtyProcess.spawn(
                session.command,
                session.args,
                cwd=session.workdir,
                env=self._build_env(session),
                cols=self._terminal.cols,
                rows=self._terminal.rows,
            )
        except (OSError, ValueError) as e:
            # ValueError: arguments the OS cannot take, e.g. embedded NUL bytes
            exit_code = (
                EXIT_COMMAND_NOT_FOUND if isinstance(e, FileNotFoundError) else EXIT_CANNOT_EXECUTE
            )
            logger.warning("Failed to spawn %s for session %s: %s", session.command, session.id, e)
            self._sessions[session.id] = session
            # Report the failure the way a process that died at once would
            self._handle_exit(session, exit_code, None, on_exit)
            return session.to_info()

        session.attach(process)
        self._sessions[session.id] = session
        # Handlers go in before reading starts; the first chunk can only
        # arrive on a later loop iteration.
        process.start(
            lambda data: self._handle_data(session, data, on_data),
            lambda code, sig: self._handle_exit(session, code, sig, on_exit),
        )

        logger.info(
            "PTY session %s started: pid=%d cmd=%s",
            session.id,
            session.pid,
            " ".join([session.command, *session.args]),
        )
        return session.to_info()

    def _is_registered(self, session: Session) -> bool:
        return self._sessions.get(session.id) is session

    def _handle_data(self, session: Session, data: str, on_data: DataCallback) -> None:
        if not self._is_registered(session):
            return
        session.buffer.append(data)
        on_data(session, data)

    def _handle_exit(
        self,
        session: Session,
        exit_code: int | None,
        exit_signal: int | None,
        on_exit: ExitCallback,
    ) -> None:
        if not session.finish(exit_code, exit_signal):
            return
        logger.info(
            "PTY session %s %s (code=%s signal=%s)",
            session.id,
            session.status.value,
            exit_code,
            exit_signal,
        )
        if not self._is_registered(session):
            logger.debug("Session %s ended after cleanup, not notifying", session.id)
            return
        on_exit(session, exit_code)

    def kill(self, session_id: str, cleanup: bool = False) -> bool:
        """Request termination of a session.

        Signalling is best effort and never waits for the process to die;
        the final ``killed`` status arrives with the exit callback. With
        ``cleanup`` the buffer is cleared and the record removed right away.

        Returns:
            False if the session id is unknown.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return False

        if session.mark_killing():
            process = session.process
            if process is not None:
                try:
                    process.signal(self._terminal.signum)
                    logger.info("Killed PTY session %s (pgid=%d)", session.id, session.pid)
                except ProcessLookupError:
                    logger.debug("Process group already gone: %d", session.pid)
                except OSError as e:
                    logger.warning("Error killing PTY session %s: %s", session.id, e)

        if cleanup:
            session.buffer.clear()
            del self._sessions[session_id]

        return True

    def cleanup_by_session(self, parent_session_id: str) -> list[str]:
        """Kill and remove every session spawned on behalf of ``parent_session_id``.

        Returns:
            Ids of the removed sessions.
        """
        removed = [
            s.id for s in self._sessions.values() if s.parent_session_id == parent_session_id
        ]
        for session_id in removed:
            self.kill(session_id, cleanup=True)
        return removed

    def clear_all_sessions(self) -> list[str]:
        """Kill and remove every session. Returns the removed ids."""
        removed = list(self._sessions)
        for session_id in removed:
            self.kill(session_id, cleanup=True)
        return removed

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def get(self, session_id: str) -> SessionInfo | None:
        session = self._sessions.get(session_id)
        return session.to_info() if session else None

    def list(self) -> list[SessionInfo]:
        return [s.to_info() for s in self._sessions.values()]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
