"""Known throwaway mail providers, matched by domain substring."""

from __future__ import annotations

from collections.abc import Iterable

DISPOSABLE_DOMAIN_FRAGMENTS: tuple[str, ...] = (
    "10minutemail",
    "20minutemail",
    "burnermail",
    "discard.email",
    "dispostable",
    "emailondeck",
    "fakeinbox",
    "getairmail",
    "getnada",
    "guerrillamail",
    "mailcatch",
    "maildrop",
    "mailinator",
    "mailnesia",
    "mintemail",
    "mohmal",
    "sharklasers",
    "spamgourmet",
    "temp-mail",
    "tempmail",
    "tempr.email",
    "throwawaymail",
    "trashmail",
    "yopmail",
)


def is_disposable(domain: str, extra: Iterable[str] = ()) -> bool:
    """Return ``True`` when ``domain`` contains a blocked fragment."""
    normalized = domain.strip().lower()
    if not normalized:
        return False
    fragments = (*DISPOSABLE_DOMAIN_FRAGMENTS, *(item.lower() for item in extra if item))
    return any(fragment in normalized for fragment in fragments)


__all__ = ["DISPOSABLE_DOMAIN_FRAGMENTS", "is_disposable"]
