"""Audit trail module."""

from .trail import AuditTrail, AuditEntry, AuditAction, AuditScope, Actor

__all__ = [
    'AuditTrail',
    'AuditEntry',
    'AuditAction',
    'AuditScope',
    'Actor'
]
