"""Commission records, lifecycle and storage."""

from .models import Commission, CommissionStatus, TRANSITIONS, can_transition
from .repository import CommissionRepository
from .lifecycle import CommissionLifecycle

__all__ = [
    'Commission',
    'CommissionStatus',
    'TRANSITIONS',
    'can_transition',
    'CommissionRepository',
    'CommissionLifecycle'
]
