"""Tests for the SMTP state machine against a scripted server."""

from __future__ import annotations

import base64
from email import message_from_bytes
from email.policy import default

import pytest
from helpers import FakeClock, ScriptedChannel

from formgate.core.config import TransportSettings
from formgate.core.models import AttachmentDescriptor, OutboundMessage
from formgate.transport.smtp_client import (
    SmtpProtocolError,
    SmtpSession,
    SmtpState,
    SmtpTransport,
    SocketSmtpChannel,
    dot_stuff,
    read_reply,
    render_message,
)


def _settings(**overrides) -> TransportSettings:
    values = {
        "preferred": "smtp",
        "smtp_host": "mx.example.com",
        "smtp_username": "mailer",
        "smtp_password": "secret",
        "ehlo_hostname": "forms.example.com",
    }
    values.update(overrides)
    return TransportSettings(**values)


def _message(**overrides) -> OutboundMessage:
    values = {
        "sender": "noreply@example.com",
        "sender_name": "Example Contact",
        "to": ("owner@example.com",),
        "bcc": ("archive@example.com",),
        "subject": "[Example] New message from Ada",
        "text_body": "Message:\nhello\n",
        "reply_to": "ada@example.com",
    }
    values.update(overrides)
    return OutboundMessage(**values)


def _deliver(channel: ScriptedChannel, **settings) -> SmtpSession:
    session = SmtpSession(channel, _settings(**settings), clock=FakeClock())
    session.deliver(_message())
    return session


def test_starttls_happy_path_command_sequence() -> None:
    channel = ScriptedChannel()

    session = _deliver(channel)

    token = base64.b64encode(b"\0mailer\0secret").decode("ascii")
    assert channel.commands == [
        "EHLO forms.example.com",
        "STARTTLS",
        "EHLO forms.example.com",
        f"AUTH PLAIN {token}",
        "MAIL FROM:<noreply@example.com>",
        "RCPT TO:<owner@example.com>",
        "RCPT TO:<archive@example.com>",
        "DATA",
        "<body>",
        "QUIT",
    ]
    assert channel.opened_with == ("mx.example.com", 587, False)
    assert channel.tls
    assert channel.closed
    assert session.history == [
        SmtpState.CONNECTED,
        SmtpState.AFTER_EHLO,
        SmtpState.AFTER_STARTTLS,
        SmtpState.AFTER_EHLO_TLS,
        SmtpState.AUTHENTICATED,
        SmtpState.MAIL_FROM_ACCEPTED,
        SmtpState.RCPT_ACCEPTED,
        SmtpState.RCPT_ACCEPTED,
        SmtpState.DATA_ACCEPTED,
        SmtpState.MESSAGE_SENT,
        SmtpState.CLOSED,
    ]


def test_implicit_tls_skips_starttls() -> None:
    channel = ScriptedChannel()

    session = _deliver(channel, encryption="tls", smtp_port=465)

    assert channel.opened_with == ("mx.example.com", 465, True)
    assert "STARTTLS" not in channel.commands
    assert session.history[:3] == [
        SmtpState.CONNECTED,
        SmtpState.AFTER_EHLO_TLS,
        SmtpState.AUTHENTICATED,
    ]


@pytest.mark.parametrize(
    ("verb", "reply", "stage"),
    [
        ("BANNER", b"554 go away\r\n", "banner"),
        ("EHLO", b"502 not implemented\r\n", "ehlo"),
        ("STARTTLS", b"454 TLS not available\r\n", "starttls"),
        ("AUTH", b"535 5.7.8 bad credentials\r\n", "auth"),
        ("MAIL", b"550 sender rejected\r\n", "mail_from"),
        ("RCPT", b"550 no such user\r\n", "rcpt_to"),
        ("DATA", b"451 try later\r\n", "data"),
        ("BODY", b"552 too big\r\n", "message"),
    ],
)
def test_unexpected_reply_names_failing_stage(verb, reply, stage) -> None:
    channel = ScriptedChannel({verb: [reply]})

    with pytest.raises(SmtpProtocolError) as excinfo:
        _deliver(channel)

    assert excinfo.value.stage == stage
    assert excinfo.value.reply is not None
    assert excinfo.value.reply.code == int(reply[:3])
    assert channel.closed


def test_rcpt_accepts_forwarding_reply() -> None:
    channel = ScriptedChannel({"RCPT": [b"251 User not local; will forward\r\n"]})

    session = _deliver(channel)

    assert session.state is SmtpState.CLOSED
    assert SmtpState.MESSAGE_SENT in session.history


def test_missing_credentials_fail_before_auth() -> None:
    channel = ScriptedChannel()

    with pytest.raises(SmtpProtocolError) as excinfo:
        _deliver(channel, smtp_password=None)

    assert excinfo.value.stage == "auth"
    assert not any(command.startswith("AUTH") for command in channel.commands)


def test_server_closing_connection_is_reported() -> None:
    channel = ScriptedChannel({"MAIL": []})

    with pytest.raises(SmtpProtocolError) as excinfo:
        _deliver(channel)

    assert excinfo.value.stage == "mail_from"
    assert excinfo.value.detail == "connection closed by server"


def test_connect_failure() -> None:
    channel = ScriptedChannel(fail_open=True)

    with pytest.raises(SmtpProtocolError) as excinfo:
        _deliver(channel)

    assert excinfo.value.stage == "connect"
    assert channel.closed


def test_quit_failure_after_delivery_is_ignored() -> None:
    channel = ScriptedChannel({"QUIT": [b"421 closing\r\n"]})

    session = _deliver(channel)

    assert SmtpState.MESSAGE_SENT in session.history
    assert session.state is SmtpState.CLOSED


class SlowChannel(ScriptedChannel):
    """Channel whose MAIL FROM exchange consumes the whole time budget."""

    def __init__(self, clock: FakeClock) -> None:
        super().__init__()
        self.clock = clock

    def send(self, data: bytes) -> None:
        if data.startswith(b"MAIL"):
            self.clock.advance(30)
        super().send(data)


def test_wall_clock_budget_aborts_session() -> None:
    clock = FakeClock()
    channel = SlowChannel(clock)
    session = SmtpSession(channel, _settings(timeout_seconds=15), clock=clock)

    with pytest.raises(SmtpProtocolError) as excinfo:
        session.deliver(_message())

    assert excinfo.value.detail == "timeout"
    assert excinfo.value.stage == "rcpt_to"
    assert all(0 < seconds <= 15 for seconds in channel.timeouts)
    assert channel.closed


def test_multiline_reply_is_joined() -> None:
    channel = ScriptedChannel()
    channel.pending = [b"250-first\r\n", b"250-second\r\n", b"250 last\r\n"]

    reply = read_reply(channel, "ehlo")

    assert reply.code == 250
    assert reply.lines == ("first", "second", "last")


@pytest.mark.parametrize(
    "lines",
    [
        [b"hello\r\n"],
        [b"250-first\r\n", b"220 second\r\n"],
    ],
)
def test_malformed_replies_rejected(lines) -> None:
    channel = ScriptedChannel()
    channel.pending = list(lines)

    with pytest.raises(SmtpProtocolError):
        read_reply(channel, "ehlo")


def test_dot_stuffing() -> None:
    payload = b"line\r\n.hidden\r\n..double\r\nend"

    assert dot_stuff(payload) == b"line\r\n..hidden\r\n...double\r\nend\r\n.\r\n"


def test_render_message_headers_and_attachments() -> None:
    message = _message(
        cc=("team@example.com",),
        headers=(("X-Originating-IP", "203.0.113.5"),),
        attachments=(
            AttachmentDescriptor("cv.pdf", "pdf", "application/pdf", b"%PDF-1.4"),
        ),
    )

    raw = render_message(message)
    parsed = message_from_bytes(raw, policy=default)

    assert b"\r\n" in raw
    assert parsed["From"] == "Example Contact <noreply@example.com>"
    assert parsed["To"] == "owner@example.com"
    assert parsed["Cc"] == "team@example.com"
    assert parsed["Bcc"] is None
    assert parsed["Reply-To"] == "ada@example.com"
    assert parsed["X-Originating-IP"] == "203.0.113.5"
    assert parsed["Message-ID"].endswith("@example.com>")
    attachments = list(parsed.iter_attachments())
    assert [part.get_filename() for part in attachments] == ["cv.pdf"]
    assert attachments[0].get_content() == b"%PDF-1.4"


def test_transport_reports_stage_on_failure() -> None:
    channel = ScriptedChannel({"AUTH": [b"535 nope\r\n"]})
    transport = SmtpTransport(_settings(), lambda: channel, clock=FakeClock())

    attempt = transport.send(_message())

    assert transport.is_configured()
    assert not attempt.success
    assert attempt.transport == "smtp"
    assert attempt.stage == "auth"


def test_transport_unconfigured_without_host() -> None:
    assert not SmtpTransport(_settings(smtp_host=None)).is_configured()


def test_socket_channel_requires_connection() -> None:
    with pytest.raises(OSError):
        SocketSmtpChannel().read_line()
