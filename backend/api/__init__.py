"""API module for HTTP routes and the SSE run stream.

This module exposes the FastAPI router for the generator backend.
"""

from api.routes import get_run_manager, router, set_run_manager

__all__ = ["get_run_manager", "router", "set_run_manager"]
