"""Phoenix status API."""

from phoenix.api.routes import setup_routes

__all__ = ["setup_routes"]
