"""CommissionEngine: one object wiring rules, commissions and the audit trail."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import logging

from .audit.trail import Actor, AuditEntry, AuditScope, AuditTrail
from .commissions.lifecycle import CommissionLifecycle
from .commissions.models import Commission, CommissionStatus
from .commissions.repository import CommissionRepository
from .core.config import settings
from .core.errors import EntryNotFound, Forbidden
from .reporting.summary import CommissionReport, ReportFilters, generate_report, sales_person_summary
from .rules.evaluator import EvaluationResult, evaluate
from .rules.models import CommissionRule
from .rules.repository import RuleRepository
from .schemas.rules import parse_rule_file, parse_rule_payload, payload_to_create_kwargs
from .storage.store import JsonFileStore, KeyValueStore

logger = logging.getLogger(__name__)


class CommissionEngine:
    """Entry point for callers: evaluate deals, record commissions, move them
    through approval and payment, and read back reports and audit history."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        seed_defaults: Optional[bool] = None,
        system_actor: Optional[Actor] = None
    ):
        self.store = store if store is not None else JsonFileStore()
        if seed_defaults is None:
            seed_defaults = settings.seed_defaults
        if system_actor is None:
            system_actor = Actor(settings.system_user_id, settings.system_user_name)

        self.audit_trail = AuditTrail(self.store)
        self.rules = RuleRepository(
            self.store,
            self.audit_trail,
            system_actor=system_actor,
            seed_defaults=seed_defaults
        )
        self.commissions = CommissionRepository(self.store)
        self.lifecycle = CommissionLifecycle(self.commissions, self.audit_trail)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def create_rule_from_payload(self, data: Dict[str, Any], actor: Optional[Actor] = None) -> CommissionRule:
        """Create a rule from a JSON-style payload."""
        payload = parse_rule_payload(data)
        return self.rules.create(actor=actor, **payload_to_create_kwargs(payload))

    def import_rules(self, data: Any, actor: Optional[Actor] = None) -> List[CommissionRule]:
        """Create every rule in a payload list; all payloads are checked first."""
        payloads = parse_rule_file(data)
        built = [self.rules.build(**payload_to_create_kwargs(p)) for p in payloads]
        created = [self.rules.add(rule, actor) for rule in built]
        logger.info(f"Imported {len(created)} commission rules")
        return created

    # ------------------------------------------------------------------
    # Evaluation and commissions
    # ------------------------------------------------------------------

    def calculate(self, deal_amount: float, rule_id: str) -> EvaluationResult:
        """Preview the commission a rule pays; nothing is stored."""
        return evaluate(self.rules.require(rule_id), deal_amount)

    def create_commission(
        self,
        deal_id: str,
        sales_person_id: str,
        deal_amount: float,
        rule_id: str,
        actor: Actor,
        notes: str = "",
        custom_fields: Optional[Dict[str, Any]] = None
    ) -> Commission:
        """Evaluate a rule for a deal and record the result as PENDING."""
        result = self.calculate(deal_amount, rule_id)
        return self.lifecycle.create(
            deal_id, sales_person_id, result, actor,
            notes=notes, custom_fields=custom_fields
        )

    def create_manual_commission(self, deal_id: str, sales_person_id: str, amount: float,
                                 actor: Actor, **kwargs) -> Commission:
        return self.lifecycle.create_manual(deal_id, sales_person_id, amount, actor, **kwargs)

    def approve(self, commission_id: str, actor: Actor, notes: Optional[str] = None) -> Commission:
        return self.lifecycle.approve(commission_id, actor, notes)

    def reject(self, commission_id: str, actor: Actor, notes: Optional[str] = None) -> Commission:
        return self.lifecycle.reject(commission_id, actor, notes)

    def mark_paid(self, commission_id: str, actor: Actor, notes: Optional[str] = None) -> Commission:
        return self.lifecycle.mark_paid(commission_id, actor, notes)

    def update_status(
        self,
        commission_id: str,
        new_status: Union[CommissionStatus, str],
        actor: Actor,
        notes: Optional[str] = None
    ) -> Commission:
        return self.lifecycle.update_status(commission_id, new_status, actor, notes)

    def update_commission(
        self,
        commission_id: str,
        changes: Dict[str, Any],
        actor: Actor,
        notes: Optional[str] = None
    ) -> Commission:
        return self.lifecycle.update(commission_id, changes, actor, notes)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def audit_for(self, subject_id: str) -> List[AuditEntry]:
        """Audit history of a commission or a deal, newest first."""
        return self.audit_trail.list_by_subject(subject_id)

    def system_audit(self) -> List[AuditEntry]:
        """Rule configuration history, newest first."""
        return self.audit_trail.list_all(scope=AuditScope.SYSTEM)

    def add_note(self, subject_id: str, actor: Actor, notes: str) -> AuditEntry:
        """Attach a manual note to a commission or deal."""
        commission = self.commissions.get(subject_id)
        return self.audit_trail.add_note(
            subject_id=subject_id,
            user_id=actor.user_id,
            user_name=actor.user_name,
            notes=notes,
            deal_id=commission.deal_id if commission else None
        )

    def edit_note(self, entry_id: str, actor: Actor, notes: str) -> AuditEntry:
        """Edit an entry's notes; manual notes or the entry's own author only."""
        entry = self.audit_trail.get(entry_id)
        if entry is None:
            raise EntryNotFound(entry_id)
        if not entry.can_edit_notes(actor.user_id):
            raise Forbidden(
                f"{actor.user_id} may not edit notes on audit entry {entry_id}",
                {'entry_id': entry_id, 'user_id': actor.user_id}
            )
        updated = self.audit_trail.update_notes(entry_id, notes)
        if updated is None:
            raise EntryNotFound(entry_id)
        return updated

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def report(self, filters: Optional[ReportFilters] = None) -> CommissionReport:
        return generate_report(self.commissions.list(), filters)

    def sales_person_report(
        self,
        sales_person_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Dict[str, Any]:
        return sales_person_summary(self.commissions.list(), sales_person_id, start_date, end_date)
