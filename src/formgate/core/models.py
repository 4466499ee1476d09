"""Core domain models used across the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class UploadedPart:
    """A file part exactly as received from the form."""

    filename: str
    content: bytes
    content_type: str | None = None
    error: str | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True, slots=True)
class AttachmentDescriptor:
    """Validated attachment, independent of the transport that sends it."""

    name: str
    extension: str
    mime_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Submission:
    """Per-request form data, cleaned in place before composition."""

    email: str
    message: str
    name: str = ""
    client_timestamp: str | None = None
    honeypot: str = ""
    captcha_token: str | None = None
    site: str | None = None
    extra_fields: dict[str, str] = field(default_factory=dict)
    files: list[UploadedPart] = field(default_factory=list)
    attachments: tuple[AttachmentDescriptor, ...] = ()

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON friendly view; attachment bytes are never included."""
        files: list[dict[str, Any]]
        if self.attachments:
            files = [
                {
                    "name": item.name,
                    "size": item.size,
                    "extension": item.extension,
                    "mime_type": item.mime_type,
                }
                for item in self.attachments
            ]
        else:
            files = [
                {"name": part.filename, "size": part.size, "error": part.error}
                for part in self.files
            ]
        return {
            "name": self.name,
            "email": self.email,
            "message": self.message,
            "ts": self.client_timestamp,
            "honeypot": self.honeypot,
            "captcha_token": self.captcha_token,
            "site": self.site,
            "extra_fields": dict(self.extra_fields),
            "attachments": files,
        }


@dataclass(slots=True)
class InboundRequest:
    """Transport-neutral view of an HTTP request reaching the endpoint."""

    method: str
    client_ip: str
    host: str | None = None
    origin: str | None = None
    referer: str | None = None
    user_agent: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    files: list[UploadedPart] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ServiceResponse:
    """HTTP status and JSON body produced for a request."""

    status: int
    body: dict[str, Any]


@dataclass(slots=True)
class RateCounter:
    """Tumbling window counter for one client key."""

    window_start: float
    count: int


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True, slots=True)
class OutboundMessage:
    """Normalized message handed to the delivery transports."""

    sender: str
    sender_name: str
    to: tuple[str, ...]
    subject: str
    text_body: str
    reply_to: str | None = None
    cc: tuple[str, ...] = ()
    bcc: tuple[str, ...] = ()
    headers: tuple[tuple[str, str], ...] = ()
    attachments: tuple[AttachmentDescriptor, ...] = ()

    @property
    def recipients(self) -> tuple[str, ...]:
        """Every envelope recipient, Bcc included."""
        return self.to + self.cc + self.bcc


@dataclass(frozen=True, slots=True)
class DeliveryAttempt:
    """Result of one transport try."""

    transport: str
    success: bool
    error: str | None = None
    stage: str | None = None


@dataclass(frozen=True, slots=True)
class DeliveryReport:
    """All attempts made for a submission; the first success wins."""

    attempts: tuple[DeliveryAttempt, ...]

    @property
    def success(self) -> bool:
        return any(attempt.success for attempt in self.attempts)

    @property
    def transport(self) -> str | None:
        for attempt in self.attempts:
            if attempt.success:
                return attempt.transport
        return None


@dataclass(frozen=True, slots=True)
class AuditRecord:
    """One immutable audit entry per request outcome."""

    timestamp: datetime
    event: str
    client_ip: str
    status: int
    outcome: str
    host: str | None = None
    origin: str | None = None
    referer: str | None = None
    user_agent: str | None = None
    transport: str | None = None
    submission: dict[str, Any] | None = None
