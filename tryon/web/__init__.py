"""Web surface of the try-on service."""

from tryon.web.server import create_app, serialize_state

__all__ = ["create_app", "serialize_state"]
