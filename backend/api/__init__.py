"""API module for HTTP routes.

This module exposes the FastAPI router for the playground backend.
"""

from api.routes import router

__all__ = ["router"]
