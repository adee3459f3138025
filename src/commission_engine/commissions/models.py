"""Commission records and their status lifecycle.

Lifecycle:
    PENDING -> APPROVED -> PAID
    PENDING -> CANCELLED (rejected)

PAID and CANCELLED are terminal. APPROVED never returns to PENDING.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..rules.models import RuleType


class CommissionStatus(Enum):
    """Commission status."""
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


# Valid transitions: {from_status: {allowed_to_statuses}}
TRANSITIONS: Dict[CommissionStatus, set] = {
    CommissionStatus.PENDING: {CommissionStatus.APPROVED, CommissionStatus.CANCELLED},
    CommissionStatus.APPROVED: {CommissionStatus.PAID},
    CommissionStatus.PAID: set(),
    CommissionStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def can_transition(current: CommissionStatus, target: CommissionStatus) -> bool:
    return target in TRANSITIONS.get(current, set())


@dataclass
class Commission:
    """A computed payout tied to one deal and one sales person."""
    id: str
    sales_person_id: str
    deal_id: str
    type: RuleType
    rate: float
    amount: float
    rule_id: Optional[str] = None
    deal_amount: Optional[float] = None
    status: CommissionStatus = CommissionStatus.PENDING
    notes: str = ""
    breakdown: List[str] = field(default_factory=list)
    custom_fields: Dict[str, Any] = field(default_factory=dict)
    paid_date: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


def commission_to_dict(c: Commission) -> Dict[str, Any]:
    return {
        'id': c.id,
        'sales_person_id': c.sales_person_id,
        'deal_id': c.deal_id,
        'rule_id': c.rule_id,
        'type': c.type.value,
        'rate': c.rate,
        'amount': c.amount,
        'deal_amount': c.deal_amount,
        'status': c.status.value,
        'notes': c.notes,
        'breakdown': list(c.breakdown),
        'custom_fields': dict(c.custom_fields),
        'paid_date': c.paid_date.isoformat() if c.paid_date else None,
        'approved_at': c.approved_at.isoformat() if c.approved_at else None,
        'created_at': c.created_at.isoformat(),
        'updated_at': c.updated_at.isoformat()
    }


def commission_from_dict(c: Dict[str, Any]) -> Commission:
    return Commission(
        id=c['id'],
        sales_person_id=c['sales_person_id'],
        deal_id=c['deal_id'],
        rule_id=c.get('rule_id'),
        type=RuleType(c.get('type', 'percentage')),
        rate=c.get('rate', 0),
        amount=c.get('amount', 0),
        deal_amount=c.get('deal_amount'),
        status=CommissionStatus(c.get('status', 'pending')),
        notes=c.get('notes') or '',
        breakdown=c.get('breakdown', []),
        custom_fields=c.get('custom_fields', {}),
        paid_date=datetime.fromisoformat(c['paid_date']) if c.get('paid_date') else None,
        approved_at=datetime.fromisoformat(c['approved_at']) if c.get('approved_at') else None,
        created_at=datetime.fromisoformat(c['created_at']),
        updated_at=datetime.fromisoformat(c['updated_at'])
    )


def status_snapshot(c: Commission) -> Dict[str, Any]:
    """The part of a commission recorded on status-change audit entries."""
    snapshot = {'status': c.status.value}
    if c.paid_date:
        snapshot['paid_date'] = c.paid_date.isoformat()
    return snapshot
