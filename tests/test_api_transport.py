"""Tests for the HTTP email API transport."""

from __future__ import annotations

import json

import httpx

from formgate.core.config import TransportSettings
from formgate.core.models import AttachmentDescriptor, OutboundMessage
from formgate.transport import ApiTransport

MESSAGE = OutboundMessage(
    sender="noreply@example.com",
    sender_name="Example Contact",
    to=("owner@example.com", "sales@example.com"),
    bcc=("archive@example.com",),
    subject="[Example] New message from Ada",
    text_body="Message:\nhello\n",
    reply_to="ada@example.com",
    headers=(("X-Originating-IP", "203.0.113.5"),),
    attachments=(AttachmentDescriptor("a.txt", "txt", "text/plain", b"hi"),),
)


def _transport(handler, **settings) -> ApiTransport:
    values = {"api_token": "server-token"}
    values.update(settings)
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ApiTransport(TransportSettings(**values), client=client)


def test_success_posts_expected_payload() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"ErrorCode": 0, "Message": "OK"})

    attempt = _transport(handler).send(MESSAGE)

    assert attempt.success
    assert attempt.transport == "api"
    request = captured[0]
    assert str(request.url) == "https://api.postmarkapp.com/email"
    assert request.headers["X-Postmark-Server-Token"] == "server-token"
    body = json.loads(request.content)
    assert body["From"] == "Example Contact <noreply@example.com>"
    assert body["To"] == "owner@example.com, sales@example.com"
    assert body["Bcc"] == "archive@example.com"
    assert "Cc" not in body
    assert body["ReplyTo"] == "ada@example.com"
    assert body["MessageStream"] == "outbound"
    assert body["Headers"] == [{"Name": "X-Originating-IP", "Value": "203.0.113.5"}]
    assert body["Attachments"] == [
        {"Name": "a.txt", "Content": "aGk=", "ContentType": "text/plain"}
    ]


def test_non_success_status_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"ErrorCode": 300, "Message": "Invalid"})

    attempt = _transport(handler).send(MESSAGE)

    assert not attempt.success
    assert attempt.stage == "response"
    assert attempt.error == "HTTP 422"


def test_network_error_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    attempt = _transport(handler).send(MESSAGE)

    assert not attempt.success
    assert attempt.stage == "request"


def test_configuration_rules() -> None:
    def never(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200)

    assert _transport(never).is_configured()
    assert not _transport(never, api_token=None).is_configured()
    assert not _transport(never, preferred="smtp").is_configured()
