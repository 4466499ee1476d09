"""Persistence helpers: rate counters and the audit trail."""

from .audit_log import AuditLogger
from .rate_store import FileRateCounterStore, InMemoryRateCounterStore

__all__ = ["AuditLogger", "FileRateCounterStore", "InMemoryRateCounterStore"]
