"""Shared test doubles."""

from __future__ import annotations

from formgate.core.config import (
    AntiAbuseSettings,
    AppSettings,
    IdentitySettings,
    LoggingSettings,
    TransportSettings,
)
from formgate.core.models import DeliveryAttempt, OutboundMessage

DEFAULT_REPLIES: dict[str, list[bytes]] = {
    "BANNER": [b"220 mx.example.com ESMTP ready\r\n"],
    "EHLO": [
        b"250-mx.example.com greets you\r\n",
        b"250-STARTTLS\r\n",
        b"250 AUTH PLAIN LOGIN\r\n",
    ],
    "STARTTLS": [b"220 2.0.0 Ready to start TLS\r\n"],
    "AUTH": [b"235 2.7.0 Authentication successful\r\n"],
    "MAIL": [b"250 2.1.0 Ok\r\n"],
    "RCPT": [b"250 2.1.5 Ok\r\n"],
    "DATA": [b"354 End data with <CR><LF>.<CR><LF>\r\n"],
    "BODY": [b"250 2.0.0 Ok: queued\r\n"],
    "QUIT": [b"221 2.0.0 Bye\r\n"],
}


class ScriptedChannel:
    """SMTP channel double answering each command from a reply table."""

    def __init__(
        self,
        overrides: dict[str, list[bytes]] | None = None,
        *,
        fail_open: bool = False,
    ) -> None:
        self.replies = {**DEFAULT_REPLIES, **(overrides or {})}
        self.fail_open = fail_open
        self.sent: list[bytes] = []
        self.timeouts: list[float] = []
        self.pending: list[bytes] = []
        self.opened_with: tuple[str, int, bool] | None = None
        self.tls = False
        self.closed = False
        self._in_data = False

    def open(self, host: str, port: int, *, timeout: float, implicit_tls: bool) -> None:
        if self.fail_open:
            raise ConnectionRefusedError("connection refused")
        self.opened_with = (host, port, implicit_tls)
        self.tls = implicit_tls
        self.pending.extend(self.replies["BANNER"])

    def set_timeout(self, seconds: float) -> None:
        self.timeouts.append(seconds)

    def send(self, data: bytes) -> None:
        self.sent.append(data)
        if self._in_data:
            self._in_data = False
            verb = "BODY"
        else:
            verb = data.split(b" ", 1)[0].strip().decode("ascii").split(":")[0]
            self._in_data = verb == "DATA"
        self.pending.extend(self.replies.get(verb, [b"500 unknown command\r\n"]))

    def read_line(self) -> bytes:
        if not self.pending:
            return b""
        return self.pending.pop(0)

    def start_tls(self, server_hostname: str) -> None:
        self.tls = True

    def close(self) -> None:
        self.closed = True

    @property
    def commands(self) -> list[str]:
        """Sent command lines, with the message body collapsed to ``<body>``."""
        lines = []
        for chunk in self.sent:
            if chunk.endswith(b"\r\n.\r\n"):
                lines.append("<body>")
            else:
                lines.append(chunk.decode("utf-8").rstrip("\r\n"))
        return lines


class StubTransport:
    """Transport double recording every message it is asked to send."""

    def __init__(self, name: str, *, success: bool = True, configured: bool = True) -> None:
        self.name = name
        self.success = success
        self.configured = configured
        self.calls: list[OutboundMessage] = []

    def is_configured(self) -> bool:
        return self.configured

    def send(self, message: OutboundMessage) -> DeliveryAttempt:
        self.calls.append(message)
        if self.success:
            return DeliveryAttempt(transport=self.name, success=True)
        return DeliveryAttempt(
            transport=self.name, success=False, error="stub failure", stage="response"
        )


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(tmp_path, **anti_abuse: object) -> AppSettings:
    """Settings pointing every writable path into ``tmp_path``."""
    return AppSettings(
        identity=IdentitySettings(
            site_name="Example",
            sender_email="noreply@example.com",
            subject_prefix="Example",
            to=["owner@example.com"],
        ),
        transport=TransportSettings(
            api_token="token",
            smtp_host="mx.example.com",
            smtp_username="mailer",
            smtp_password="secret",
        ),
        anti_abuse=AntiAbuseSettings(rate_store_dir=tmp_path / "rate", **anti_abuse),
        logging=LoggingSettings(audit_path=tmp_path / "audit.jsonl"),
    )
