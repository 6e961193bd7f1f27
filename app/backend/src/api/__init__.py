"""Public API routers exposed by the FastAPI application."""

from . import (
    health,
    images,
    storage,
    uploads,
)

__all__ = [
    "health",
    "images",
    "storage",
    "uploads",
]
