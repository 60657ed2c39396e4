"""API Package.

FastAPI server for the AutoCount sync engine.
"""

from api.server import create_app, app

__all__ = [
    "create_app",
    "app",
]
