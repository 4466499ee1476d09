"""Builds the outbound plain-text message from a validated submission."""

from __future__ import annotations

from datetime import datetime

from formgate.core.config import AppSettings
from formgate.core.errors import ConfigurationError
from formgate.core.models import OutboundMessage, Submission


def strip_non_printable(value: str, *, keep_newlines: bool = True) -> str:
    """Drop control characters; newlines and tabs survive when allowed."""
    text = value.replace("\r\n", "\n").replace("\r", "\n")
    kept = []
    for ch in text:
        if ch in "\n\t":
            if keep_newlines:
                kept.append(ch)
            else:
                kept.append(" ")
        elif ch.isprintable():
            kept.append(ch)
    return "".join(kept)


def header_value(value: str) -> str:
    """Single-line, trimmed value safe to place in a mail header."""
    return " ".join(strip_non_printable(value, keep_newlines=False).split())


def field_label(key: str) -> str:
    """Human label for a form field name, e.g. ``company_name`` -> ``Company Name``."""
    words = header_value(key.replace("_", " ").replace("-", " ")).split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def _format_size(size: int) -> str:
    return f"{size / 1024:.2f} KB"


class MessageComposer:
    """Deterministic subject/body builder."""

    def __init__(self, settings: AppSettings) -> None:
        self._identity = settings.identity
        self._max_body = settings.anti_abuse.max_body_length

    def build_subject(self, submission: Submission) -> str:
        who = header_value(submission.name) or header_value(submission.email)
        prefix = header_value(self._identity.subject_prefix)
        subject = f"New message from {who}"
        return f"[{prefix}] {subject}" if prefix else subject

    def build_body(
        self,
        submission: Submission,
        *,
        client_ip: str,
        site: str | None,
        now: datetime,
    ) -> str:
        message = strip_non_printable(submission.message).strip()[: self._max_body]
        lines = [
            f"Name: {header_value(submission.name) or '-'}",
            f"Email: {header_value(submission.email)}",
            f"Site: {header_value(site or self._identity.site_name)}",
            f"IP: {client_ip}",
            f"Time (UTC): {now.strftime('%Y-%m-%d %H:%M:%S')}",
        ]
        lines.extend(
            f"{field_label(key)}: {header_value(value)}"
            for key, value in submission.extra_fields.items()
        )
        lines.extend(["", "Message:", message])
        if submission.attachments:
            lines.append("")
            lines.append("Attachments:")
            lines.extend(
                f"- {item.name} ({_format_size(item.size)})"
                for item in submission.attachments
            )
        return "\n".join(lines) + "\n"

    def compose(
        self,
        submission: Submission,
        *,
        client_ip: str,
        site: str | None,
        now: datetime,
    ) -> OutboundMessage:
        """Return the message; raises when no recipient is configured."""
        to = tuple(address.strip() for address in self._identity.to if address.strip())
        if not to:
            raise ConfigurationError("recipient_missing")
        return OutboundMessage(
            sender=self._identity.sender_email,
            sender_name=header_value(self._identity.sender_name),
            to=to,
            cc=tuple(a.strip() for a in self._identity.cc if a.strip()),
            bcc=tuple(a.strip() for a in self._identity.bcc if a.strip()),
            reply_to=header_value(submission.email) or None,
            subject=self.build_subject(submission),
            text_body=self.build_body(
                submission, client_ip=client_ip, site=site, now=now
            ),
            headers=(("X-Originating-IP", client_ip),),
            attachments=submission.attachments,
        )


__all__ = ["MessageComposer", "field_label", "header_value", "strip_non_printable"]
