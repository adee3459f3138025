"""Commission reporting.

Counts and sums only; currency strings, CSV and PDF rendering belong to
the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..commissions.models import Commission, CommissionStatus
from ..rules.models import RuleType


@dataclass
class ReportFilters:
    """Filters applied before summarizing; None means no filter."""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    sales_person_id: Optional[str] = None
    status: Optional[CommissionStatus] = None
    type: Optional[RuleType] = None

    def matches(self, commission: Commission) -> bool:
        if self.start_date and commission.created_at < self.start_date:
            return False
        if self.end_date and commission.created_at > self.end_date:
            return False
        if self.sales_person_id and commission.sales_person_id != self.sales_person_id:
            return False
        if self.status and commission.status != self.status:
            return False
        if self.type and commission.type != self.type:
            return False
        return True


@dataclass
class ReportSummary:
    """Totals over a set of commissions."""
    total_commissions: int = 0
    total_amount: float = 0
    pending_amount: float = 0
    approved_amount: float = 0
    paid_amount: float = 0
    cancelled_amount: float = 0
    count_by_status: Dict[str, int] = field(default_factory=dict)
    amount_by_type: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_commissions': self.total_commissions,
            'total_amount': self.total_amount,
            'pending_amount': self.pending_amount,
            'approved_amount': self.approved_amount,
            'paid_amount': self.paid_amount,
            'cancelled_amount': self.cancelled_amount,
            'count_by_status': dict(self.count_by_status),
            'amount_by_type': dict(self.amount_by_type)
        }


@dataclass
class CommissionReport:
    """Filtered commissions plus their summary."""
    commissions: List[Commission]
    summary: ReportSummary
    filters: ReportFilters


def _sum(commissions: Iterable[Commission]) -> float:
    return round(sum(c.amount for c in commissions), 2)


def summarize(commissions: List[Commission]) -> ReportSummary:
    by_status = {status: [c for c in commissions if c.status == status] for status in CommissionStatus}

    return ReportSummary(
        total_commissions=len(commissions),
        total_amount=_sum(commissions),
        pending_amount=_sum(by_status[CommissionStatus.PENDING]),
        approved_amount=_sum(by_status[CommissionStatus.APPROVED]),
        paid_amount=_sum(by_status[CommissionStatus.PAID]),
        cancelled_amount=_sum(by_status[CommissionStatus.CANCELLED]),
        count_by_status={status.value: len(items) for status, items in by_status.items()},
        amount_by_type={
            rule_type.value: _sum(c for c in commissions if c.type == rule_type)
            for rule_type in RuleType
        }
    )


def generate_report(
    commissions: Iterable[Commission],
    filters: Optional[ReportFilters] = None
) -> CommissionReport:
    """Filter commissions and total them by status and type."""
    filters = filters or ReportFilters()
    selected = [c for c in commissions if filters.matches(c)]
    selected.sort(key=lambda c: c.created_at, reverse=True)
    return CommissionReport(commissions=selected, summary=summarize(selected), filters=filters)


def sales_person_summary(
    commissions: Iterable[Commission],
    sales_person_id: str,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None
) -> Dict[str, Any]:
    """Per-rep totals for a period."""
    report = generate_report(
        commissions,
        ReportFilters(start_date=start_date, end_date=end_date, sales_person_id=sales_person_id)
    )
    # Cancelled commissions never pay out
    live = [c for c in report.commissions if c.status != CommissionStatus.CANCELLED]

    return {
        'sales_person_id': sales_person_id,
        'period': {
            'start': start_date.isoformat() if start_date else None,
            'end': end_date.isoformat() if end_date else None
        },
        'total_commissions': _sum(live),
        'paid_commissions': report.summary.paid_amount,
        'pending_commissions': round(report.summary.pending_amount + report.summary.approved_amount, 2),
        'deal_count': len({c.deal_id for c in live}),
        'commission_count': len(live)
    }


EXPORT_HEADERS = [
    'ID',
    'Sales Person',
    'Deal ID',
    'Type',
    'Rate',
    'Amount',
    'Status',
    'Paid Date',
    'Notes',
    'Created At'
]


def export_rows(commissions: Iterable[Commission]) -> List[List[Any]]:
    """Header row plus one raw row per commission, for a CSV/PDF writer."""
    rows: List[List[Any]] = [list(EXPORT_HEADERS)]
    for c in commissions:
        rows.append([
            c.id,
            c.sales_person_id,
            c.deal_id,
            c.type.value,
            c.rate,
            c.amount,
            c.status.value,
            c.paid_date.isoformat() if c.paid_date else '',
            c.notes,
            c.created_at.isoformat()
        ])
    return rows
