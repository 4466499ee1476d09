"""Append-only JSON-lines audit trail."""

from __future__ import annotations

import fcntl
import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from formgate.core.datetime_utils import serialize_datetime
from formgate.core.models import AuditRecord

LOGGER = logging.getLogger(__name__)

REDACTED = "[redacted]"


def redact(value: Any, fields: frozenset[str]) -> Any:
    """Return a copy of ``value`` with every key in ``fields`` masked."""
    if isinstance(value, dict):
        masked: dict[str, Any] = {}
        for key, item in value.items():
            if key in fields and item not in (None, ""):
                masked[key] = REDACTED
            else:
                masked[key] = redact(item, fields)
        return masked
    if isinstance(value, list):
        return [redact(item, fields) for item in value]
    return value


class AuditLogger:
    """Writes one redacted JSON object per request outcome."""

    def __init__(self, path: Path | str, redact_fields: Iterable[str] = ()) -> None:
        self._path = Path(path)
        self._redact = frozenset(redact_fields)

    @property
    def path(self) -> Path:
        return self._path

    def serialize(self, entry: AuditRecord) -> str:
        """Render ``entry`` as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": serialize_datetime(entry.timestamp),
            "event": entry.event,
            "client_ip": entry.client_ip,
            "host": entry.host,
            "origin": entry.origin,
            "referer": entry.referer,
            "user_agent": entry.user_agent,
            "status": entry.status,
            "outcome": entry.outcome,
            "transport": entry.transport,
            "submission": redact(entry.submission, self._redact)
            if entry.submission is not None
            else None,
        }
        return json.dumps(payload, ensure_ascii=False, default=str)

    def record(self, entry: AuditRecord) -> None:
        """Append ``entry``; failures are logged and never raised."""
        try:
            line = self.serialize(entry)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                try:
                    handle.write(line + "\n")
                    handle.flush()
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.error("Failed to write audit record to %s: %s", self._path, exc)


__all__ = ["AuditLogger", "REDACTED", "redact"]
