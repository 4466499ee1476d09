"""Delivery through an ordered list of transports; the first success wins."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from formgate.core.interfaces import MailTransport
from formgate.core.models import DeliveryAttempt, DeliveryReport, OutboundMessage

LOGGER = logging.getLogger(__name__)


class DualTransportMailer:
    """Tries the API transport, then falls back to SMTP.

    Each transport gets exactly one attempt. Transports reporting
    ``is_configured() == False`` are skipped without counting as an attempt.
    """

    def __init__(self, transports: Sequence[MailTransport]) -> None:
        self._transports = tuple(transports)

    def deliver(self, message: OutboundMessage) -> DeliveryReport:
        attempts: list[DeliveryAttempt] = []
        for transport in self._transports:
            if not transport.is_configured():
                LOGGER.debug("Skipping unconfigured transport %s", transport.name)
                continue
            attempt = transport.send(message)
            attempts.append(attempt)
            if attempt.success:
                break
            LOGGER.warning(
                "Transport %s failed at %s: %s",
                attempt.transport,
                attempt.stage,
                attempt.error,
            )
        if not attempts:
            LOGGER.error("No delivery transport is configured")
        return DeliveryReport(attempts=tuple(attempts))


__all__ = ["DualTransportMailer"]
