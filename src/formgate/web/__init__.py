"""Web application entry point for formgate."""

from .app import create_app

__all__ = ["create_app"]
