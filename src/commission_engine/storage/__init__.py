"""Persistence collaborators for rules, commissions and audit entries."""

from .store import (
    KeyValueStore,
    MemoryStore,
    JsonFileStore,
    RULES_KEY,
    COMMISSIONS_KEY,
    AUDIT_KEY,
)

__all__ = [
    'KeyValueStore',
    'MemoryStore',
    'JsonFileStore',
    'RULES_KEY',
    'COMMISSIONS_KEY',
    'AUDIT_KEY',
]
