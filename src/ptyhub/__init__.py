"""ptyhub — supervised pseudo-terminal sessions with live multi-viewer streaming."""

__version__ = "0.1.0"
