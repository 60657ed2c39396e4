"""API Routes Package."""

from api.routes import health, sync, valuation

__all__ = [
    "health",
    "sync",
    "valuation",
]
