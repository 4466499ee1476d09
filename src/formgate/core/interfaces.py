"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from typing import Protocol

from .models import AuditRecord, DeliveryAttempt, OutboundMessage


class RateCounterStore(Protocol):
    """Shared per-client counter with a fixed time window."""

    def increment(self, key: str) -> int:
        """Atomically count one request for ``key`` and return the window total."""
        raise NotImplementedError


class CaptchaVerifier(Protocol):
    """Checks a CAPTCHA token with a third-party provider."""

    def verify(self, token: str, remote_ip: str | None) -> bool:
        """Return ``True`` only when the provider confirms the token."""
        raise NotImplementedError


class MailTransport(Protocol):
    """A single delivery mechanism; one attempt per call, never retried."""

    name: str

    def is_configured(self) -> bool:
        """Return ``False`` when the transport should be skipped."""
        raise NotImplementedError

    def send(self, message: OutboundMessage) -> DeliveryAttempt:
        """Try to deliver ``message`` once and report the outcome."""
        raise NotImplementedError


class AuditSink(Protocol):
    """Destination for audit records."""

    def record(self, entry: AuditRecord) -> None:
        """Persist ``entry``; must never raise."""
        raise NotImplementedError


__all__ = ["AuditSink", "CaptchaVerifier", "MailTransport", "RateCounterStore"]
