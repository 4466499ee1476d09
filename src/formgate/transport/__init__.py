"""Delivery transports: HTTP email API with SMTP fallback."""

from .api_client import ApiTransport
from .mailer import DualTransportMailer
from .smtp_client import (
    SmtpChannel,
    SmtpProtocolError,
    SmtpSession,
    SmtpState,
    SmtpTransport,
    SocketSmtpChannel,
)

__all__ = [
    "ApiTransport",
    "DualTransportMailer",
    "SmtpChannel",
    "SmtpProtocolError",
    "SmtpSession",
    "SmtpState",
    "SmtpTransport",
    "SocketSmtpChannel",
]
