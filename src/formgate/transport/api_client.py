"""HTTP email API transport (Postmark-compatible JSON payload)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from email.utils import formataddr
from typing import Any

import httpx

from formgate.core.config import TransportSettings
from formgate.core.models import DeliveryAttempt, OutboundMessage
from formgate.ingestion.attachments import to_api_payload

LOGGER = logging.getLogger(__name__)


def build_payload(message: OutboundMessage, message_stream: str) -> dict[str, Any]:
    """Return the JSON body for one outbound message."""
    payload: dict[str, Any] = {
        "From": formataddr((message.sender_name, message.sender)),
        "To": ", ".join(message.to),
        "Subject": message.subject,
        "TextBody": message.text_body,
        "MessageStream": message_stream,
    }
    if message.cc:
        payload["Cc"] = ", ".join(message.cc)
    if message.bcc:
        payload["Bcc"] = ", ".join(message.bcc)
    if message.reply_to:
        payload["ReplyTo"] = message.reply_to
    if message.headers:
        payload["Headers"] = [
            {"Name": name, "Value": value} for name, value in message.headers
        ]
    if message.attachments:
        payload["Attachments"] = to_api_payload(message.attachments)
    return payload


@dataclass(slots=True)
class ApiTransport:
    """Single synchronous POST to the email API; 2xx means delivered."""

    settings: TransportSettings
    client: httpx.Client | None = None
    name: str = "api"

    def is_configured(self) -> bool:
        return self.settings.preferred == "api" and bool(self.settings.api_token)

    def send(self, message: OutboundMessage) -> DeliveryAttempt:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Postmark-Server-Token": self.settings.api_token or "",
        }
        payload = build_payload(message, self.settings.message_stream)
        timeout = self.settings.timeout_seconds
        try:
            if self.client is not None:
                response = self.client.post(
                    self.settings.api_url, json=payload, headers=headers, timeout=timeout
                )
            else:
                response = httpx.post(
                    self.settings.api_url, json=payload, headers=headers, timeout=timeout
                )
        except httpx.HTTPError as exc:
            LOGGER.error("Email API request failed: %s", exc)
            return DeliveryAttempt(
                transport=self.name, success=False, error=str(exc), stage="request"
            )

        if not response.is_success:
            LOGGER.error(
                "Email API rejected message: HTTP %d %s",
                response.status_code,
                response.text[:200],
            )
            return DeliveryAttempt(
                transport=self.name,
                success=False,
                error=f"HTTP {response.status_code}",
                stage="response",
            )

        LOGGER.info("Email API accepted message: %s", message.subject)
        return DeliveryAttempt(transport=self.name, success=True)


__all__ = ["ApiTransport", "build_payload"]
