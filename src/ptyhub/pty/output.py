"""Read, write and search a session's output buffer by id."""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ptyhub.errors import InvalidInputError
from ptyhub.pty.lifecycle import SessionRegistry

logger = logging.getLogger(__name__)


class _Result(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ReadResult(_Result):
    lines: list[str]
    total_lines: int
    offset: int
    has_more: bool


class SearchMatch(_Result):
    line_number: int  # 0-based index into the line buffer
    text: str


class SearchResult(_Result):
    matches: list[SearchMatch]
    total_matches: int
    total_lines: int
    offset: int
    has_more: bool


class OutputFacade:
    """Shapes buffer access for callers that only know a session id.

    Every method returns ``False``/``None`` when the id is unknown.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry

    def write(self, session_id: str, data: str) -> bool:
        """Send input to a session's terminal.

        Writing to a process that has already exited succeeds as a no-op.
        """
        session = self._registry.get_session(session_id)
        if session is None:
            return False
        process = session.process
        if process is None:
            return True
        try:
            process.write(data)
        except OSError as e:
            logger.debug("Write to PTY session %s failed: %s", session_id, e)
        return True

    def read(self, session_id: str, offset: int = 0, limit: int | None = None) -> ReadResult | None:
        session = self._registry.get_session(session_id)
        if session is None:
            return None
        offset = max(offset, 0)
        lines = session.buffer.read(offset, limit)
        total_lines = session.buffer.length
        return ReadResult(
            lines=lines,
            total_lines=total_lines,
            offset=offset,
            has_more=offset + len(lines) < total_lines,
        )

    def search(
        self,
        session_id: str,
        pattern: str | re.Pattern[str],
        offset: int = 0,
        limit: int | None = None,
    ) -> SearchResult | None:
        """Search the whole buffer, then paginate the matches.

        Raises:
            InvalidInputError: If ``pattern`` is not a valid regular expression.
        """
        session = self._registry.get_session(session_id)
        if session is None:
            return None
        try:
            all_matches = session.buffer.search(pattern)
        except re.error as e:
            raise InvalidInputError(f"Invalid pattern {pattern!r}: {e}") from e

        offset = max(offset, 0)
        stop = None if limit is None else offset + max(limit, 0)
        page = all_matches[offset:stop]
        return SearchResult(
            matches=[SearchMatch(line_number=i, text=line) for i, line in page],
            total_matches=len(all_matches),
            total_lines=session.buffer.length,
            offset=offset,
            has_more=offset + len(page) < len(all_matches),
        )


class RawBuffer(_Result):
    raw: str
    byte_length: int


class PlainBuffer(_Result):
    plain: str
    byte_length: int
