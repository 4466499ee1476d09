"""Anti-abuse checks run before any submission is delivered."""

from .captcha import HttpCaptchaVerifier, extract_token
from .checks import PROCEED, GuardContext, Proceed, Reject, Verdict, run_checks
from .guard import AntiAbuseGuard

__all__ = [
    "PROCEED",
    "AntiAbuseGuard",
    "GuardContext",
    "HttpCaptchaVerifier",
    "Proceed",
    "Reject",
    "Verdict",
    "extract_token",
    "run_checks",
]
