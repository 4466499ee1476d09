"""Minimal SMTP submission client written as an explicit state machine.

One session makes exactly one pass::

    CONNECTED -> AFTER_EHLO -> AFTER_STARTTLS -> AFTER_EHLO_TLS
      -> AUTHENTICATED -> MAIL_FROM_ACCEPTED -> RCPT_ACCEPTED
      -> DATA_ACCEPTED -> MESSAGE_SENT -> CLOSED

Every transition consumes one server reply and requires a specific status
code. Anything else, an I/O error, or running out of the wall-clock budget
aborts the session with :class:`SmtpProtocolError` naming the failing stage.
Socket I/O goes through :class:`SmtpChannel` so tests can script a server.
"""

from __future__ import annotations

import base64
import logging
import re
import socket
import ssl
import time
from collections.abc import Callable
from dataclasses import dataclass
from email.message import EmailMessage
from email.policy import SMTP
from email.utils import formataddr, formatdate, make_msgid
from enum import Enum
from typing import Protocol

from formgate.core.config import TransportSettings
from formgate.core.models import DeliveryAttempt, OutboundMessage

LOGGER = logging.getLogger(__name__)

MAX_LINE_LENGTH = 8192


class SmtpState(str, Enum):
    """Protocol milestones reached by a session."""

    INITIAL = "initial"
    CONNECTED = "connected"
    AFTER_EHLO = "after_ehlo"
    AFTER_STARTTLS = "after_starttls"
    AFTER_EHLO_TLS = "after_ehlo_tls"
    AUTHENTICATED = "authenticated"
    MAIL_FROM_ACCEPTED = "mail_from_accepted"
    RCPT_ACCEPTED = "rcpt_accepted"
    DATA_ACCEPTED = "data_accepted"
    MESSAGE_SENT = "message_sent"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class SmtpReply:
    """A complete, possibly multi-line, server reply."""

    code: int
    lines: tuple[str, ...]

    @property
    def text(self) -> str:
        return " ".join(self.lines)


class SmtpProtocolError(Exception):
    """Raised when a session cannot advance past ``stage``."""

    def __init__(
        self, stage: str, detail: str, reply: SmtpReply | None = None
    ) -> None:
        super().__init__(f"{stage}: {detail}")
        self.stage = stage
        self.detail = detail
        self.reply = reply


class SmtpChannel(Protocol):
    """Byte-level connection used by :class:`SmtpSession`."""

    def open(
        self, host: str, port: int, *, timeout: float, implicit_tls: bool
    ) -> None:
        """Connect, wrapping in TLS immediately when ``implicit_tls``."""
        raise NotImplementedError

    def set_timeout(self, seconds: float) -> None:
        raise NotImplementedError

    def send(self, data: bytes) -> None:
        raise NotImplementedError

    def read_line(self) -> bytes:
        """Return one CRLF-terminated line, or ``b""`` at end of stream."""
        raise NotImplementedError

    def start_tls(self, server_hostname: str) -> None:
        """Upgrade the existing connection to TLS."""
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class SocketSmtpChannel:
    """:class:`SmtpChannel` over a real TCP socket."""

    def __init__(self, ssl_context: ssl.SSLContext | None = None) -> None:
        self._context = ssl_context or ssl.create_default_context()
        self._sock: socket.socket | None = None
        self._reader = None

    def open(
        self, host: str, port: int, *, timeout: float, implicit_tls: bool
    ) -> None:
        sock = socket.create_connection((host, port), timeout=timeout)
        if implicit_tls:
            sock = self._context.wrap_socket(sock, server_hostname=host)
        self._attach(sock)

    def _attach(self, sock: socket.socket) -> None:
        self._sock = sock
        self._reader = sock.makefile("rb")

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise OSError("SMTP channel is not connected")
        return self._sock

    def set_timeout(self, seconds: float) -> None:
        self._require_socket().settimeout(seconds)

    def send(self, data: bytes) -> None:
        self._require_socket().sendall(data)

    def read_line(self) -> bytes:
        self._require_socket()
        if self._reader is None:
            raise OSError("SMTP channel has no reader")
        return self._reader.readline(MAX_LINE_LENGTH + 1)

    def start_tls(self, server_hostname: str) -> None:
        sock = self._require_socket()
        if self._reader is not None:
            self._reader.close()
        self._attach(self._context.wrap_socket(sock, server_hostname=server_hostname))

    def close(self) -> None:
        for resource in (self._reader, self._sock):
            if resource is None:
                continue
            try:
                resource.close()
            except OSError as exc:
                LOGGER.debug("Error closing SMTP channel: %s", exc)
        self._reader = None
        self._sock = None


def read_reply(channel: SmtpChannel, stage: str) -> SmtpReply:
    """Read lines until the final ``NNN <text>`` line of a reply."""
    lines: list[str] = []
    code: int | None = None
    while True:
        raw = channel.read_line()
        if not raw:
            raise SmtpProtocolError(stage, "connection closed by server")
        if len(raw) > MAX_LINE_LENGTH:
            raise SmtpProtocolError(stage, "reply line too long")
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if len(line) < 3 or not line[:3].isdigit():
            raise SmtpProtocolError(stage, f"malformed reply {line!r}")
        line_code = int(line[:3])
        if code is not None and line_code != code:
            raise SmtpProtocolError(
                stage, f"inconsistent reply codes {code}/{line_code}"
            )
        code = line_code
        lines.append(line[4:])
        if line[3:4] != "-":
            return SmtpReply(code=code, lines=tuple(lines))


def render_message(message: OutboundMessage) -> bytes:
    """Render RFC 5322 bytes with CRLF line endings."""
    mime = EmailMessage()
    mime["From"] = formataddr((message.sender_name, message.sender))
    mime["To"] = ", ".join(message.to)
    if message.cc:
        mime["Cc"] = ", ".join(message.cc)
    if message.reply_to:
        mime["Reply-To"] = message.reply_to
    mime["Subject"] = message.subject
    mime["Date"] = formatdate(usegmt=True)
    domain = message.sender.rpartition("@")[2] or None
    mime["Message-ID"] = make_msgid(domain=domain)
    for name, value in message.headers:
        mime[name] = value
    mime.set_content(message.text_body)
    for item in message.attachments:
        maintype, _, subtype = item.mime_type.partition("/")
        mime.add_attachment(
            item.content,
            maintype=maintype or "application",
            subtype=subtype or "octet-stream",
            filename=item.name,
        )
    return mime.as_bytes(policy=SMTP)


def dot_stuff(payload: bytes) -> bytes:
    """Escape leading dots and append the end-of-data marker."""
    stuffed = re.sub(rb"(?m)^\.", b"..", payload)
    if not stuffed.endswith(b"\r\n"):
        stuffed += b"\r\n"
    return stuffed + b".\r\n"


class SmtpSession:
    """One pass through the SMTP submission state machine."""

    def __init__(
        self,
        channel: SmtpChannel,
        settings: TransportSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel = channel
        self._settings = settings
        self._clock = clock
        self._deadline = 0.0
        self.state = SmtpState.INITIAL
        self.history: list[SmtpState] = []

    def _advance(self, state: SmtpState) -> None:
        LOGGER.debug("SMTP state %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _remaining(self, stage: str) -> float:
        remaining = self._deadline - self._clock()
        if remaining <= 0:
            raise SmtpProtocolError(stage, "timeout")
        return remaining

    def _exchange(
        self,
        stage: str,
        payload: bytes | None,
        expected: tuple[int, ...],
        next_state: SmtpState,
    ) -> SmtpReply:
        self._channel.set_timeout(self._remaining(stage))
        try:
            if payload is not None:
                self._channel.send(payload)
            reply = read_reply(self._channel, stage)
        except OSError as exc:
            raise SmtpProtocolError(stage, f"I/O error: {exc}") from exc
        if reply.code not in expected:
            raise SmtpProtocolError(
                stage, f"unexpected reply {reply.code} {reply.text}", reply
            )
        self._advance(next_state)
        return reply

    def _command(
        self, stage: str, line: str, expected: tuple[int, ...], state: SmtpState
    ) -> SmtpReply:
        return self._exchange(stage, f"{line}\r\n".encode("utf-8"), expected, state)

    def deliver(self, message: OutboundMessage) -> None:
        """Send ``message``; raises :class:`SmtpProtocolError` on any failure."""
        settings = self._settings
        host = settings.smtp_host or ""
        try:
            payload = dot_stuff(render_message(message))
        except (TypeError, ValueError) as exc:
            raise SmtpProtocolError("compose", f"cannot render message: {exc}") from exc
        implicit_tls = settings.encryption == "tls"
        self._deadline = self._clock() + settings.timeout_seconds
        try:
            try:
                self._channel.open(
                    host,
                    settings.smtp_port,
                    timeout=self._remaining("connect"),
                    implicit_tls=implicit_tls,
                )
            except OSError as exc:
                raise SmtpProtocolError("connect", f"I/O error: {exc}") from exc
            self._exchange("banner", None, (220,), SmtpState.CONNECTED)

            ehlo = f"EHLO {settings.ehlo_hostname}"
            if implicit_tls:
                self._command("ehlo", ehlo, (250,), SmtpState.AFTER_EHLO_TLS)
            else:
                self._command("ehlo", ehlo, (250,), SmtpState.AFTER_EHLO)
                self._command("starttls", "STARTTLS", (220,), SmtpState.AFTER_STARTTLS)
                try:
                    self._channel.start_tls(host)
                except (OSError, ssl.SSLError) as exc:
                    raise SmtpProtocolError(
                        "starttls", f"TLS handshake failed: {exc}"
                    ) from exc
                self._command("ehlo_tls", ehlo, (250,), SmtpState.AFTER_EHLO_TLS)

            if not settings.smtp_username or not settings.smtp_password:
                raise SmtpProtocolError("auth", "credentials not configured")
            token = base64.b64encode(
                f"\0{settings.smtp_username}\0{settings.smtp_password}".encode("utf-8")
            ).decode("ascii")
            self._command(
                "auth", f"AUTH PLAIN {token}", (235,), SmtpState.AUTHENTICATED
            )

            self._command(
                "mail_from",
                f"MAIL FROM:<{message.sender}>",
                (250,),
                SmtpState.MAIL_FROM_ACCEPTED,
            )
            for recipient in message.recipients:
                self._command(
                    "rcpt_to",
                    f"RCPT TO:<{recipient}>",
                    (250, 251),
                    SmtpState.RCPT_ACCEPTED,
                )
            self._command("data", "DATA", (354,), SmtpState.DATA_ACCEPTED)
            self._exchange("message", payload, (250,), SmtpState.MESSAGE_SENT)
            self._quit()
        finally:
            self._channel.close()
            if self.state is not SmtpState.CLOSED:
                self._advance(SmtpState.CLOSED)

    def _quit(self) -> None:
        """Say goodbye; the message is already accepted, so errors are only logged."""
        try:
            self._command("quit", "QUIT", (221,), SmtpState.CLOSED)
        except SmtpProtocolError as exc:
            LOGGER.debug("Ignoring QUIT failure after delivery: %s", exc)


class SmtpTransport:
    """Fallback transport driving one :class:`SmtpSession` per message."""

    name = "smtp"

    def __init__(
        self,
        settings: TransportSettings,
        channel_factory: Callable[[], SmtpChannel] = SocketSmtpChannel,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._channel_factory = channel_factory
        self._clock = clock

    def is_configured(self) -> bool:
        return bool(self._settings.smtp_host)

    def send(self, message: OutboundMessage) -> DeliveryAttempt:
        LOGGER.info(
            "Attempting SMTP delivery via %s:%d",
            self._settings.smtp_host,
            self._settings.smtp_port,
        )
        session = SmtpSession(
            self._channel_factory(), self._settings, clock=self._clock
        )
        try:
            session.deliver(message)
        except SmtpProtocolError as exc:
            LOGGER.error("SMTP delivery failed at %s: %s", exc.stage, exc.detail)
            return DeliveryAttempt(
                transport=self.name, success=False, error=exc.detail, stage=exc.stage
            )
        LOGGER.info(
            "SMTP delivery accepted for %d recipient(s)", len(message.recipients)
        )
        return DeliveryAttempt(transport=self.name, success=True)


__all__ = [
    "SmtpChannel",
    "SmtpProtocolError",
    "SmtpReply",
    "SmtpSession",
    "SmtpState",
    "SmtpTransport",
    "SocketSmtpChannel",
    "dot_stuff",
    "read_reply",
    "render_message",
]
