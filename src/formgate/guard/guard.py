"""Anti-abuse guard composing the individual checks in their fixed order."""

from __future__ import annotations

import time
from collections.abc import Callable

from formgate.core.config import AntiAbuseSettings
from formgate.core.interfaces import CaptchaVerifier, RateCounterStore
from formgate.core.models import InboundRequest, Submission

from .checks import (
    Check,
    GuardContext,
    Verdict,
    check_email,
    check_honeypot,
    check_message,
    check_origin,
    check_timing,
    make_captcha_check,
    make_rate_limit_check,
    run_checks,
)


class AntiAbuseGuard:
    """Decides whether a submission may proceed to delivery."""

    def __init__(
        self,
        settings: AntiAbuseSettings,
        rate_store: RateCounterStore,
        captcha: CaptchaVerifier | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self.checks: tuple[tuple[str, Check], ...] = (
            ("origin", check_origin),
            ("honeypot", check_honeypot),
            ("timing", check_timing),
            ("rate_limit", make_rate_limit_check(rate_store)),
            ("email", check_email),
            ("message", check_message),
            ("captcha", make_captcha_check(captcha)),
        )

    def evaluate(self, request: InboundRequest, submission: Submission) -> Verdict:
        context = GuardContext(
            request=request,
            submission=submission,
            settings=self._settings,
            now=self._clock(),
        )
        return run_checks(self.checks, context)


__all__ = ["AntiAbuseGuard"]
