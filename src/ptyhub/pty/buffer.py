"""Output buffer for PTY sessions."""

from __future__ import annotations

import re
from collections import deque
from itertools import islice

LINE_DELIMITER = "\n"


class OutputBuffer:
    """Append-only store of one session's output.

    Keeps two representations side by side so neither has to be rebuilt on
    each call:

    * **raw** (``_chunks``) — the exact stream as received, delimiters and
      escape sequences untouched, for verbatim terminal replay.
    * **lines** (``_lines``) — completed lines with the delimiter stripped,
      for pagination and regex search.

    Text after the last delimiter is held as a pending fragment until more
    output arrives or ``flush()`` commits it.

    Both stores are unbounded by default. ``max_lines`` keeps only the newest
    lines in the index, ``max_bytes`` drops the oldest raw chunks once the
    raw store grows past that many UTF-8 bytes.
    """

    def __init__(self, max_lines: int | None = None, max_bytes: int | None = None) -> None:
        self._chunks: deque[str] = deque()
        self._chunk_sizes: deque[int] = deque()
        self._byte_length: int = 0
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._pending: str = ""
        self._total_lines: int = 0  # Total lines ever committed
        self._max_bytes = max_bytes

    def append(self, chunk: str) -> None:
        """Append a chunk of output exactly as received."""
        if not chunk:
            return

        size = len(chunk.encode("utf-8", errors="replace"))
        self._chunks.append(chunk)
        self._chunk_sizes.append(size)
        self._byte_length += size
        if self._max_bytes is not None:
            self._evict_raw(self._max_bytes)

        if LINE_DELIMITER not in chunk:
            self._pending += chunk
            return

        parts = (self._pending + chunk).split(LINE_DELIMITER)
        self._pending = parts.pop()
        for line in parts:
            self._commit(line)

    def flush(self) -> None:
        """Commit the pending fragment as a final line.

        Called once when the owning process terminates so an unterminated
        last line is not lost. Does nothing when no fragment is pending.
        """
        if self._pending:
            self._commit(self._pending)
            self._pending = ""

    def _commit(self, line: str) -> None:
        # "\r\n" from the terminal line discipline counts as one delimiter
        if line.endswith("\r"):
            line = line[:-1]
        self._lines.append(line)
        self._total_lines += 1

    def _evict_raw(self, max_bytes: int) -> None:
        while self._byte_length > max_bytes and len(self._chunks) > 1:
            self._chunks.popleft()
            self._byte_length -= self._chunk_sizes.popleft()

    def read(self, offset: int = 0, limit: int | None = None) -> list[str]:
        """Read completed lines ``[offset, offset + limit)``.

        Args:
            offset: 0-based line offset within the current buffer.
            limit: Maximum number of lines to return, or ``None`` for all.

        Returns:
            List of lines; empty when ``offset`` is past the end.
        """
        start = max(offset, 0)
        if start >= len(self._lines):
            return []
        stop = None if limit is None else start + max(limit, 0)
        return list(islice(self._lines, start, stop))

    def search(self, pattern: str | re.Pattern[str]) -> list[tuple[int, str]]:
        """Find every completed line matching a regex pattern.

        Returns list of (line_index, line_text) tuples in buffer order.

        Raises:
            re.error: If ``pattern`` is not a valid regular expression.
        """
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        return [(i, line) for i, line in enumerate(self._lines) if compiled.search(line)]

    def read_raw(self) -> str:
        """Everything appended since the last clear, pending fragment included."""
        return "".join(self._chunks)

    @property
    def byte_length(self) -> int:
        """UTF-8 size of ``read_raw()``."""
        return self._byte_length

    @property
    def length(self) -> int:
        """Number of completed lines currently held."""
        return len(self._lines)

    @property
    def total_lines(self) -> int:
        """Total number of lines ever committed."""
        return self._total_lines

    @property
    def pending(self) -> str:
        return self._pending

    def clear(self) -> None:
        """Discard raw store, line index and pending fragment."""
        self._chunks.clear()
        self._chunk_sizes.clear()
        self._byte_length = 0
        self._lines.clear()
        self._pending = ""
        self._total_lines = 0

    def __len__(self) -> int:
        return len(self._lines)
