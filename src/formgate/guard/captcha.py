"""CAPTCHA verification against third-party providers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from formgate.core.config import AntiAbuseSettings

LOGGER = logging.getLogger(__name__)

VERIFY_ENDPOINTS: Mapping[str, str] = {
    "turnstile": "https://challenges.cloudflare.com/turnstile/v0/siteverify",
    "hcaptcha": "https://api.hcaptcha.com/siteverify",
    "recaptcha": "https://www.google.com/recaptcha/api/siteverify",
}

TOKEN_FIELDS: Mapping[str, tuple[str, ...]] = {
    "turnstile": ("cf-turnstile-response", "captcha_token"),
    "hcaptcha": ("h-captcha-response", "captcha_token"),
    "recaptcha": ("g-recaptcha-response", "captcha_token"),
    "none": ("captcha_token",),
}


def extract_token(provider: str, fields: Mapping[str, str]) -> str | None:
    """Return the first non-empty token among the provider's field names."""
    for name in TOKEN_FIELDS.get(provider, ("captcha_token",)):
        value = (fields.get(name) or "").strip()
        if value:
            return value
    return None


@dataclass(slots=True)
class HttpCaptchaVerifier:
    """Verifies tokens with the provider's ``siteverify`` endpoint.

    Any failure to reach the provider counts as a failed verification.
    """

    provider: str
    secret: str
    timeout_seconds: float = 5.0
    client: httpx.Client | None = None

    @classmethod
    def from_settings(
        cls, settings: AntiAbuseSettings, timeout_seconds: float = 5.0
    ) -> HttpCaptchaVerifier:
        return cls(
            provider=settings.captcha_provider,
            secret=settings.captcha_secret or "",
            timeout_seconds=timeout_seconds,
        )

    def verify(self, token: str, remote_ip: str | None) -> bool:
        endpoint = VERIFY_ENDPOINTS.get(self.provider)
        if endpoint is None or not self.secret or not token:
            return False
        data = {"secret": self.secret, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip
        try:
            if self.client is not None:
                response = self.client.post(
                    endpoint, data=data, timeout=self.timeout_seconds
                )
            else:
                response = httpx.post(endpoint, data=data, timeout=self.timeout_seconds)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            LOGGER.warning("CAPTCHA provider %s unreachable: %s", self.provider, exc)
            return False
        except ValueError:
            LOGGER.warning("CAPTCHA provider %s returned invalid JSON", self.provider)
            return False
        return isinstance(payload, dict) and payload.get("success") is True


__all__ = ["HttpCaptchaVerifier", "TOKEN_FIELDS", "VERIFY_ENDPOINTS", "extract_token"]
