"""Anti-abuse checks and the runner that composes them.

Every check is a plain function taking a :class:`GuardContext` and returning
either :data:`PROCEED` or a :class:`Reject`. :func:`run_checks` evaluates them
in order and stops at the first rejection, so ordering and short-circuiting
stay explicit and each check can be tested on its own.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from urllib.parse import urlsplit

from email_validator import EmailNotValidError, validate_email

from formgate.core.config import AntiAbuseSettings
from formgate.core.interfaces import CaptchaVerifier, RateCounterStore
from formgate.core.models import InboundRequest, Submission

from .disposable import is_disposable

LOGGER = logging.getLogger(__name__)

# Values above this are JavaScript ``Date.now()`` milliseconds.
_MILLISECOND_THRESHOLD = 1e11


@dataclass(frozen=True, slots=True)
class Proceed:
    """The request may continue to the next check."""


@dataclass(frozen=True, slots=True)
class Reject:
    """Terminal outcome for the request.

    ``category`` is ``"abuse"``, ``"client"`` or ``"honeypot"``; honeypot
    rejections are answered as a decoy success.
    """

    status: int
    reason: str
    category: str = "abuse"
    check: str | None = None

    @property
    def decoy(self) -> bool:
        return self.category == "honeypot"


PROCEED = Proceed()

Verdict = Proceed | Reject


@dataclass(slots=True)
class GuardContext:
    """Everything a check may look at."""

    request: InboundRequest
    submission: Submission
    settings: AntiAbuseSettings
    now: float


Check = Callable[[GuardContext], Verdict]


def run_checks(checks: Sequence[tuple[str, Check]], context: GuardContext) -> Verdict:
    """Run ``checks`` in order and return the first rejection, if any."""
    for name, check in checks:
        verdict = check(context)
        if isinstance(verdict, Reject):
            LOGGER.info(
                "Check %s rejected request from %s: %s",
                name,
                context.request.client_ip,
                verdict.reason,
            )
            return replace(verdict, check=name)
    return PROCEED


def host_of(value: str | None) -> str | None:
    """Return the lowercase host of a URL or ``Host`` header value."""
    if not value:
        return None
    candidate = value.strip()
    if "//" not in candidate:
        candidate = f"//{candidate}"
    try:
        return urlsplit(candidate).hostname
    except ValueError:
        return None


def check_origin(context: GuardContext) -> Verdict:
    """Origin, or failing that Referer, must name the request host.

    Requests carrying neither header are let through.
    """
    request = context.request
    expected = host_of(request.host)
    if request.origin:
        claimed = host_of(request.origin)
    elif request.referer:
        claimed = host_of(request.referer)
    else:
        return PROCEED
    if expected is None or claimed != expected:
        return Reject(403, "forbidden")
    return PROCEED


def check_honeypot(context: GuardContext) -> Verdict:
    if context.submission.honeypot.strip():
        return Reject(200, "honeypot", category="honeypot")
    return PROCEED


def parse_client_timestamp(raw: str | None) -> float | None:
    """Parse the optional render timestamp; unusable values mean "absent"."""
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    if value > _MILLISECOND_THRESHOLD:
        value /= 1000.0
    return value


def check_timing(context: GuardContext) -> Verdict:
    """Reject forms submitted sooner than the configured minimum.

    Elapsed time exactly equal to the minimum passes.
    """
    minimum = context.settings.min_submit_seconds
    rendered_at = parse_client_timestamp(context.submission.client_timestamp)
    if minimum <= 0 or rendered_at is None:
        return PROCEED
    if context.now - rendered_at < minimum:
        return Reject(429, "too_fast")
    return PROCEED


def make_rate_limit_check(store: RateCounterStore) -> Check:
    """Build the rate check bound to ``store``."""

    def check_rate_limit(context: GuardContext) -> Verdict:
        count = store.increment(context.request.client_ip)
        if count > context.settings.rate_max:
            return Reject(429, "rate_limited")
        return PROCEED

    return check_rate_limit


def check_email(context: GuardContext) -> Verdict:
    """Validate address syntax and, when enabled, the disposable blocklist."""
    submission = context.submission
    try:
        validated = validate_email(submission.email, check_deliverability=False)
    except EmailNotValidError:
        return Reject(400, "invalid_email", category="client")
    submission.email = validated.normalized
    if context.settings.block_disposable and is_disposable(
        validated.domain, context.settings.extra_disposable_domains
    ):
        return Reject(400, "disposable_email_blocked", category="client")
    return PROCEED


def check_message(context: GuardContext) -> Verdict:
    if not context.submission.message.strip():
        return Reject(400, "empty_message", category="client")
    return PROCEED


def make_captcha_check(verifier: CaptchaVerifier | None) -> Check:
    """Build the CAPTCHA check; only provider ``none`` skips verification."""

    def check_captcha(context: GuardContext) -> Verdict:
        if context.settings.captcha_provider == "none":
            return PROCEED
        token = context.submission.captcha_token
        if not token or verifier is None:
            return Reject(403, "captcha_failed")
        if not verifier.verify(token, context.request.client_ip):
            return Reject(403, "captcha_failed")
        return PROCEED

    return check_captcha


__all__ = [
    "PROCEED",
    "Check",
    "GuardContext",
    "Proceed",
    "Reject",
    "Verdict",
    "check_email",
    "check_honeypot",
    "check_message",
    "check_origin",
    "check_timing",
    "host_of",
    "make_captcha_check",
    "make_rate_limit_check",
    "parse_client_timestamp",
    "run_checks",
]
