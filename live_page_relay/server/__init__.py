"""HTTP/WebSocket surface of the relay."""

from .app import create_app
from .page import DEFAULT_CONTENT, build_page, load_template

__all__ = ["create_app", "DEFAULT_CONTENT", "build_page", "load_template"]
