"""Error taxonomy shared by every component.

Each error carries the machine-readable ``code`` returned to the caller and
the HTTP ``status`` the orchestrator answers with.
"""

from __future__ import annotations


class FormgateError(RuntimeError):
    """Base class for errors converted into JSON responses."""

    status: int = 500
    event: str = "internal_error"

    def __init__(self, code: str, detail: str | None = None) -> None:
        super().__init__(detail or code)
        self.code = code
        self.detail = detail or code


class ClientError(FormgateError):
    """Malformed or disallowed input; never retried."""

    status = 400
    event = "client_error"


class AbuseRejection(FormgateError):
    """Origin, timing, rate or CAPTCHA rejection."""

    event = "abuse_rejected"

    def __init__(self, code: str, status: int, detail: str | None = None) -> None:
        super().__init__(code, detail)
        self.status = status


class ConfigurationError(FormgateError):
    """Operator misconfiguration, fatal for the request."""

    status = 500
    event = "config_error"


class TransportError(FormgateError):
    """Raised once every delivery transport has failed."""

    status = 500
    event = "delivery_failed"

    def __init__(
        self, code: str, detail: str | None = None, *, attempted: tuple[str, ...] = ()
    ) -> None:
        super().__init__(code, detail)
        self.attempted = attempted


__all__ = [
    "AbuseRejection",
    "ClientError",
    "ConfigurationError",
    "FormgateError",
    "TransportError",
]
