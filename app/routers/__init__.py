"""API routers for the Pine Script Runner."""

from app.routers import health, pine

__all__ = ["health", "pine"]
