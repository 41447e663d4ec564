"""Routes for live analytics."""

from .live import create_live_router

__all__ = ["create_live_router"]
