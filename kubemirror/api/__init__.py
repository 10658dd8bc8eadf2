"""REST API layer for kubemirror.

Exposes:
    create_app -- FastAPI application factory.
"""

from kubemirror.api.app import create_app

__all__ = ["create_app"]
