"""Commission reporting module."""

from .summary import (
    EXPORT_HEADERS,
    ReportFilters,
    ReportSummary,
    CommissionReport,
    generate_report,
    sales_person_summary,
    export_rows,
)

__all__ = [
    'EXPORT_HEADERS',
    'ReportFilters',
    'ReportSummary',
    'CommissionReport',
    'generate_report',
    'sales_person_summary',
    'export_rows'
]
