"""Web transport: REST endpoints and the real-time viewer protocol."""

from ptyhub.web.hub import SubscriptionHub, Viewer
from ptyhub.web.server import create_app

__all__ = ["SubscriptionHub", "Viewer", "create_app"]
