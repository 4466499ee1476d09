"""Validation of uploaded file parts."""

from __future__ import annotations

import base64
import logging
import mimetypes
from collections.abc import Iterable, Sequence
from pathlib import PurePosixPath, PureWindowsPath

from formgate.core.config import AntiAbuseSettings
from formgate.core.errors import ClientError
from formgate.core.models import AttachmentDescriptor, UploadedPart

LOGGER = logging.getLogger(__name__)

_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"%PDF-", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", "application/msword"),
)

_ZIP_MAGIC = b"PK\x03\x04"
_FALLBACK_MIME = "application/octet-stream"


def sniff_mime_type(content: bytes, filename: str) -> str:
    """Infer a MIME type from magic bytes, then from the file name."""
    for magic, mime in _SIGNATURES:
        if content.startswith(magic):
            return mime
    guessed, _ = mimetypes.guess_type(filename)
    if content.startswith(_ZIP_MAGIC):
        # docx/xlsx are zip containers; trust the name only when it agrees.
        if guessed and ("openxmlformats" in guessed or guessed == "application/zip"):
            return guessed
        return "application/zip"
    if guessed:
        return guessed
    try:
        content[:1024].decode("utf-8")
    except UnicodeDecodeError:
        return _FALLBACK_MIME
    return "text/plain"


def safe_filename(raw: str) -> str:
    """Strip client-side directories from a submitted file name."""
    name = PureWindowsPath(PurePosixPath(raw).name).name
    return "".join(ch for ch in name if ch.isprintable()).strip() or "attachment"


def extension_of(filename: str) -> str:
    return PurePosixPath(filename).suffix.lower().lstrip(".")


class AttachmentProcessor:
    """Checks count, type and cumulative size of uploaded files."""

    def __init__(self, settings: AntiAbuseSettings) -> None:
        self._allowed = frozenset(settings.allowed_extensions)
        self._max_bytes = settings.max_attachment_bytes
        self._max_count = settings.max_attachments

    def process(self, parts: Iterable[UploadedPart]) -> tuple[AttachmentDescriptor, ...]:
        """Return descriptors for every part, or raise without returning any.

        Raises:
            ClientError: ``attachment_error``, ``attachment_type`` or
                ``attachment_too_large``
        """
        present = [part for part in parts if part.filename or part.content or part.error]
        if not present:
            return ()
        if len(present) > self._max_count:
            raise ClientError(
                "attachment_error", f"At most {self._max_count} attachment(s) allowed"
            )

        descriptors: list[AttachmentDescriptor] = []
        total = 0
        for part in present:
            if part.error:
                raise ClientError("attachment_error", f"Upload failed: {part.error}")
            name = safe_filename(part.filename)
            extension = extension_of(name)
            if extension not in self._allowed:
                raise ClientError("attachment_type", f"File type not allowed: {name}")
            total += part.size
            if total > self._max_bytes:
                raise ClientError(
                    "attachment_too_large",
                    f"Attachments exceed {self._max_bytes} bytes",
                )
            descriptors.append(
                AttachmentDescriptor(
                    name=name,
                    extension=extension,
                    mime_type=sniff_mime_type(part.content, name),
                    content=part.content,
                )
            )

        LOGGER.debug("Accepted %d attachment(s), %d bytes", len(descriptors), total)
        return tuple(descriptors)


def to_api_payload(attachments: Sequence[AttachmentDescriptor]) -> list[dict[str, str]]:
    """Base64-encode attachments in the JSON shape the email API expects."""
    return [
        {
            "Name": item.name,
            "Content": base64.b64encode(item.content).decode("ascii"),
            "ContentType": item.mime_type,
        }
        for item in attachments
    ]


__all__ = [
    "AttachmentProcessor",
    "extension_of",
    "safe_filename",
    "sniff_mime_type",
    "to_api_payload",
]
