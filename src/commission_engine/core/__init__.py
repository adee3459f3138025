"""Core configuration and error types for the commission engine."""

from .config import settings, reload_settings
from .errors import (
    CommissionEngineError,
    ValidationError,
    InvalidTransition,
    NotFoundError,
    RuleNotFound,
    CommissionNotFound,
    EntryNotFound,
    PersistenceError,
    Forbidden,
)

__all__ = [
    'settings',
    'reload_settings',
    'CommissionEngineError',
    'ValidationError',
    'InvalidTransition',
    'NotFoundError',
    'RuleNotFound',
    'CommissionNotFound',
    'EntryNotFound',
    'PersistenceError',
    'Forbidden',
]
