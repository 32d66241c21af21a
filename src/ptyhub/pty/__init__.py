"""PTY sessions — spawn, buffer, search and supervise pseudo-terminals.

Each session runs in its own process group behind a pseudo-terminal; its
output is kept byte-exact for replay and indexed by line for pagination
and search.
"""

from ptyhub.pty.buffer import OutputBuffer
from ptyhub.pty.lifecycle import SessionRegistry
from ptyhub.pty.manager import SessionService
from ptyhub.pty.output import OutputFacade, ReadResult, SearchResult
from ptyhub.pty.session import Session, SessionInfo, SessionStatus, SpawnOptions

__all__ = [
    "OutputBuffer",
    "OutputFacade",
    "ReadResult",
    "SearchResult",
    "Session",
    "SessionInfo",
    "SessionRegistry",
    "SessionService",
    "SessionStatus",
    "SpawnOptions",
]
