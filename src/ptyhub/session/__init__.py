"""Session events exchanged between the core and its observers."""

from ptyhub.session.wire import EventType, Subscription, Wire

__all__ = ["EventType", "Subscription", "Wire"]
