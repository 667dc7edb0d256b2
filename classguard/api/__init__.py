"""REST API layer for classguard.

Exposes:
    create_app -- FastAPI application factory.
    build_app  -- Alias for create_app (used by classguard.app bootstrap).
"""

from classguard.api.app import create_app

build_app = create_app

__all__ = ["build_app", "create_app"]
