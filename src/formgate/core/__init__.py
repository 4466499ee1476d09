"""Core utilities for configuration, logging, errors, and dependency wiring."""

from .config import AppSettings, load_app_settings
from .container import ServiceContainer
from .errors import (
    AbuseRejection,
    ClientError,
    ConfigurationError,
    FormgateError,
    TransportError,
)
from .logging import configure_logging

__all__ = [
    "AbuseRejection",
    "AppSettings",
    "ClientError",
    "ConfigurationError",
    "FormgateError",
    "ServiceContainer",
    "TransportError",
    "configure_logging",
    "load_app_settings",
]
