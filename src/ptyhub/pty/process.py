"""Pseudo-terminal child process and its master file descriptor."""

from __future__ import annotations

import asyncio
import codecs
import fcntl
import logging
import os
import pty
import struct
import termios
from typing import Callable

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536
# How long to keep reading after the child exits, in case a grandchild
# still holds the slave side open.
EOF_GRACE_SECONDS = 1.0

DataHandler = Callable[[str], None]
ExitHandler = Callable[[int | None, int | None], None]


def _set_winsize(fd: int, rows: int, cols: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); stdin is the slave side.
    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


class PtyProcess:
    """A child process attached to a pseudo-terminal.

    The master side is non-blocking and read through ``loop.add_reader``, so
    all callbacks run on the event loop thread. Nothing is read until
    ``start()`` has installed both handlers; the reader then fires on a
    later loop iteration at the earliest, so output produced immediately
    after spawn is never delivered to a handler-less process.

    Use ``PtyProcess.spawn()`` to create one.
    """

    def __init__(self, proc: asyncio.subprocess.Process, master_fd: int) -> None:
        self._proc = proc
        self._master_fd = master_fd
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._on_data: DataHandler | None = None
        self._on_exit: ExitHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reading = False
        self._eof = asyncio.Event()
        self._write_queue = bytearray()
        self._exit_task: asyncio.Task | None = None

    @classmethod
    async def spawn(
        cls,
        command: str,
        args: list[str],
        cwd: str,
        env: dict[str, str],
        cols: int,
        rows: int,
    ) -> PtyProcess:
        """Launch ``command`` in a new PTY with its own session and process group.

        Raises:
            OSError: If the executable cannot be found or started.
        """
        master_fd, slave_fd = pty.openpty()
        try:
            _set_winsize(slave_fd, rows, cols)
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=env,
                start_new_session=True,  # Creates new process group
                preexec_fn=_acquire_controlling_tty,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        return cls(proc, master_fd)

    def start(self, on_data: DataHandler, on_exit: ExitHandler) -> None:
        """Install handlers and begin reading.

        ``on_data`` is called once per decoded chunk; ``on_exit`` exactly once
        with (exit_code, exit_signal) after the last chunk has been delivered.
        """
        if self._on_data is not None:
            raise RuntimeError(f"PTY process {self.pid} already started")
        self._on_data = on_data
        self._on_exit = on_exit
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(self._master_fd, self._on_readable)
        self._reading = True
        self._exit_task = self._loop.create_task(self._watch_exit())

    @property
    def started(self) -> bool:
        return self._on_data is not None

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def closed(self) -> bool:
        return self._master_fd < 0

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_CHUNK_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO once every slave descriptor is closed
            self._stop_reading()
            return
        if not data:
            self._stop_reading()
            return
        self._deliver(self._decoder.decode(data))

    def _deliver(self, text: str) -> None:
        if not text or self._on_data is None:
            return
        try:
            self._on_data(text)
        except Exception:
            logger.exception("Error in data handler for pid %d", self.pid)

    def _stop_reading(self) -> None:
        if self._reading and self._loop is not None:
            self._loop.remove_reader(self._master_fd)
            self._reading = False
        self._eof.set()

    async def _watch_exit(self) -> None:
        returncode = await self._proc.wait()
        try:
            await asyncio.wait_for(self._eof.wait(), timeout=EOF_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.debug("PTY %d still open after exit, closing", self.pid)
        self._stop_reading()
        self._deliver(self._decoder.decode(b"", final=True))
        self._close()

        if returncode < 0:
            exit_code, exit_signal = None, -returncode
        else:
            exit_code, exit_signal = returncode, None
        logger.debug("PTY %d exited (code=%s signal=%s)", self.pid, exit_code, exit_signal)

        if self._on_exit is not None:
            try:
                self._on_exit(exit_code, exit_signal)
            except Exception:
                logger.exception("Error in exit handler for pid %d", self.pid)

    def write(self, data: str) -> None:
        """Write input to the terminal.

        Writes that would block are queued and finished when the terminal
        drains. Writing after the terminal is closed does nothing.

        Raises:
            OSError: If the write fails for a reason other than back-pressure.
        """
        if self.closed:
            logger.debug("Write to closed PTY %d ignored", self.pid)
            return
        payload = data.encode("utf-8")
        if self._write_queue:
            self._write_queue.extend(payload)
            return
        try:
            written = os.write(self._master_fd, payload)
        except BlockingIOError:
            written = 0
        if written < len(payload):
            self._write_queue.extend(payload[written:])
            asyncio.get_running_loop().add_writer(self._master_fd, self._on_writable)

    def _on_writable(self) -> None:
        try:
            written = os.write(self._master_fd, self._write_queue)
        except BlockingIOError:
            return
        except OSError as e:
            logger.debug("Dropping queued input for PTY %d: %s", self.pid, e)
            written = len(self._write_queue)
        del self._write_queue[:written]
        if not self._write_queue and self._loop is not None:
            self._loop.remove_writer(self._master_fd)

    def resize(self, cols: int, rows: int) -> None:
        """Change the terminal geometry; the child receives SIGWINCH."""
        if self.closed:
            return
        _set_winsize(self._master_fd, rows, cols)

    def signal(self, signum: int) -> None:
        """Send ``signum`` to the child's whole process group.

        Raises:
            ProcessLookupError: If the process group no longer exists.
        """
        if self._proc.returncode is not None:
            # Already reaped; the pid may belong to someone else by now
            raise ProcessLookupError(self._proc.pid)
        os.killpg(self._proc.pid, signum)

    def _close(self) -> None:
        if self.closed:
            return
        if self._loop is not None and self._write_queue:
            self._loop.remove_writer(self._master_fd)
            self._write_queue.clear()
        try:
            os.close(self._master_fd)
        except OSError:
            pass
        self._master_fd = -1

    async def wait(self) -> None:
        """Wait until the exit handler has run."""
        if self._exit_task is not None:
            await asyncio.shield(self._exit_task)
