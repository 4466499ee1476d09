"""Tests for attachment validation."""

from __future__ import annotations

import base64

import pytest

from formgate.core.config import AntiAbuseSettings
from formgate.core.errors import ClientError
from formgate.core.models import UploadedPart
from formgate.ingestion import AttachmentProcessor
from formgate.ingestion.attachments import (
    extension_of,
    safe_filename,
    sniff_mime_type,
    to_api_payload,
)

PDF = b"%PDF-1.7\n%fake\n"


def _processor(**settings) -> AttachmentProcessor:
    return AttachmentProcessor(AntiAbuseSettings(**settings))


def test_accepts_allowed_files_in_order() -> None:
    parts = [
        UploadedPart("Quote.PDF", PDF),
        UploadedPart("notes.txt", b"plain words\n"),
    ]

    descriptors = _processor().process(parts)

    assert [item.name for item in descriptors] == ["Quote.PDF", "notes.txt"]
    assert descriptors[0].extension == "pdf"
    assert descriptors[0].mime_type == "application/pdf"
    assert descriptors[1].mime_type == "text/plain"
    assert descriptors[1].size == len(b"plain words\n")


def test_empty_parts_are_ignored() -> None:
    assert _processor().process([UploadedPart("", b"")]) == ()
    assert _processor().process([]) == ()


def test_disallowed_extension_rejected() -> None:
    with pytest.raises(ClientError) as excinfo:
        _processor().process([UploadedPart("payload.exe", b"MZ\x90\x00")])

    assert excinfo.value.code == "attachment_type"
    assert excinfo.value.status == 400


def test_cumulative_size_limit() -> None:
    """Each file fits on its own but the total does not."""

    parts = [UploadedPart("a.txt", b"x" * 60), UploadedPart("b.txt", b"y" * 60)]

    assert len(_processor(max_attachment_bytes=120).process(parts)) == 2
    with pytest.raises(ClientError) as excinfo:
        _processor(max_attachment_bytes=100).process(parts)

    assert excinfo.value.code == "attachment_too_large"


def test_upload_error_rejects_whole_request() -> None:
    parts = [UploadedPart("ok.txt", b"fine"), UploadedPart("bad.pdf", b"", error="partial")]

    with pytest.raises(ClientError) as excinfo:
        _processor().process(parts)

    assert excinfo.value.code == "attachment_error"


def test_too_many_parts() -> None:
    parts = [UploadedPart(f"{index}.txt", b"x") for index in range(3)]

    with pytest.raises(ClientError) as excinfo:
        _processor(max_attachments=2).process(parts)

    assert excinfo.value.code == "attachment_error"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("../../etc/passwd.txt", "passwd.txt"),
        ("C:\\Users\\me\\cv.docx", "cv.docx"),
        ("bad\x00name.pdf", "badname.pdf"),
        ("", "attachment"),
    ],
)
def test_safe_filename(raw: str, expected: str) -> None:
    assert safe_filename(raw) == expected


def test_extension_of() -> None:
    assert extension_of("archive.tar.GZ") == "gz"
    assert extension_of("README") == ""


def test_sniff_prefers_magic_bytes() -> None:
    assert sniff_mime_type(b"\x89PNG\r\n\x1a\n....", "photo.jpg") == "image/png"
    assert sniff_mime_type(b"\xff\xd8\xff\xe0", "scan.jpeg") == "image/jpeg"
    assert sniff_mime_type(b"\x00\xff\xfe\x01", "blob") == "application/octet-stream"


def test_sniff_zip_containers_trust_matching_names() -> None:
    assert sniff_mime_type(b"PK\x03\x04rest", "bundle.zip") == "application/zip"
    assert sniff_mime_type(b"PK\x03\x04rest", "letter.pdf") == "application/zip"


def test_api_payload_is_base64() -> None:
    descriptors = _processor().process([UploadedPart("doc.pdf", PDF)])

    assert to_api_payload(descriptors) == [
        {
            "Name": "doc.pdf",
            "Content": base64.b64encode(PDF).decode("ascii"),
            "ContentType": "application/pdf",
        }
    ]
