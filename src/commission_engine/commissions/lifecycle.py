"""Commission status lifecycle.

All status changes go through CommissionLifecycle. Each operation runs
read-check-mutate-persist-audit under a lock held for that commission id,
so two transitions on the same commission never interleave. The new
commission state and its audit entry are saved together; if either save
fails, the in-memory commission is put back and PersistenceError raised.
A refused transition leaves the commission untouched and writes no entry.
"""

from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Optional, Union
import logging
import math
import threading
import uuid
import weakref

from ..audit.trail import Actor, AuditAction, AuditEntry, AuditTrail
from ..core.errors import InvalidTransition, PersistenceError, ValidationError
from ..rules.evaluator import EvaluationResult
from ..rules.models import RuleType
from .models import (
    Commission,
    CommissionStatus,
    can_transition,
    commission_to_dict,
    status_snapshot,
)
from .repository import CommissionRepository

logger = logging.getLogger(__name__)

# Audit tag written for each target status
TRANSITION_ACTIONS = {
    CommissionStatus.APPROVED: AuditAction.APPROVED,
    CommissionStatus.CANCELLED: AuditAction.REJECTED,
    CommissionStatus.PAID: AuditAction.PAID,
}

# Fields update() may change; status goes through the state machine
EDITABLE_FIELDS = ("notes", "custom_fields")


def _is_amount(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class CommissionLifecycle:
    """Create commissions and move them through their statuses."""

    def __init__(self, repository: CommissionRepository, audit_trail: AuditTrail):
        self.repository = repository
        self.audit_trail = audit_trail
        # Entries disappear once no caller holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._registry_lock = threading.Lock()

    def _lock_for(self, commission_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(commission_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[commission_id] = lock
            return lock

    @staticmethod
    def _parse_status(value: Union[CommissionStatus, str]) -> CommissionStatus:
        try:
            return CommissionStatus(value)
        except ValueError:
            raise ValidationError(
                f"Unknown commission status: {value!r}",
                {'errors': [f"Unknown status {value!r}"]}
            )

    def _commit(
        self,
        previous: Optional[Commission],
        commission: Commission,
        action: AuditAction,
        actor: Actor,
        previous_value: Optional[Dict[str, Any]],
        new_value: Optional[Dict[str, Any]],
        notes: Optional[str] = None
    ) -> AuditEntry:
        """Store the new commission state and its audit entry, or neither."""
        self.repository.put(commission)
        try:
            self.repository.save()
            return self.audit_trail.record(
                subject_id=commission.id,
                deal_id=commission.deal_id,
                action=action,
                user_id=actor.user_id,
                user_name=actor.user_name,
                previous_value=previous_value,
                new_value=new_value,
                notes=notes or "",
            )
        except Exception as e:
            self.repository.rollback(commission.id, previous)
            try:
                self.repository.save()
            except Exception as restore_error:
                logger.error(f"Could not restore commissions after failed save: {restore_error}")
            raise PersistenceError(
                f"Failed to record {action.value} for commission {commission.id}: {e}",
                {'commission_id': commission.id, 'action': action.value}
            ) from e

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        deal_id: str,
        sales_person_id: str,
        result: EvaluationResult,
        actor: Actor,
        notes: str = "",
        custom_fields: Optional[Dict[str, Any]] = None
    ) -> Commission:
        """Record a rule evaluation as a PENDING commission."""
        return self._create(
            deal_id=deal_id,
            sales_person_id=sales_person_id,
            commission_type=result.rule_type,
            rate=result.rate,
            amount=result.commission,
            actor=actor,
            rule_id=result.rule_id,
            deal_amount=result.deal_amount,
            breakdown=list(result.breakdown),
            notes=notes,
            custom_fields=custom_fields,
        )

    def create_manual(
        self,
        deal_id: str,
        sales_person_id: str,
        amount: float,
        actor: Actor,
        commission_type: Union[RuleType, str] = RuleType.FLAT,
        rate: float = 0,
        deal_amount: Optional[float] = None,
        notes: str = "",
        custom_fields: Optional[Dict[str, Any]] = None
    ) -> Commission:
        """Record a commission whose amount was entered by hand."""
        if not _is_amount(amount):
            raise ValidationError(
                f"Commission amount must be a finite number (got {amount!r})",
                {'errors': [f"Invalid amount {amount!r}"]}
            )
        try:
            commission_type = RuleType(commission_type)
        except ValueError:
            raise ValidationError(f"Invalid commission type: {commission_type!r}")
        return self._create(
            deal_id=deal_id,
            sales_person_id=sales_person_id,
            commission_type=commission_type,
            rate=rate,
            amount=round(amount, 2),
            actor=actor,
            deal_amount=deal_amount,
            breakdown=[f"Manual amount: ${amount:,.2f}"],
            notes=notes,
            custom_fields=custom_fields,
        )

    def _create(
        self,
        deal_id: str,
        sales_person_id: str,
        commission_type: RuleType,
        rate: float,
        amount: float,
        actor: Actor,
        rule_id: Optional[str] = None,
        deal_amount: Optional[float] = None,
        breakdown=None,
        notes: str = "",
        custom_fields: Optional[Dict[str, Any]] = None
    ) -> Commission:
        errors = []
        if not deal_id:
            errors.append("Deal is required")
        if not sales_person_id:
            errors.append("Sales person is required")
        if not _is_amount(amount):
            errors.append(f"Commission amount must be a finite number (got {amount!r})")
        elif amount < 0:
            errors.append(f"Commission amount must be >= 0 (got {amount})")
        if not _is_amount(rate):
            errors.append(f"Commission rate must be a finite number (got {rate!r})")
        if deal_amount is not None and not _is_amount(deal_amount):
            errors.append(f"Deal amount must be a finite number (got {deal_amount!r})")
        if errors:
            raise ValidationError("; ".join(errors), {'errors': errors})

        now = datetime.now()
        commission = Commission(
            id=str(uuid.uuid4())[:12],
            sales_person_id=sales_person_id,
            deal_id=deal_id,
            rule_id=rule_id,
            type=commission_type,
            rate=rate,
            amount=amount,
            deal_amount=deal_amount,
            notes=notes or "",
            breakdown=list(breakdown or []),
            custom_fields=dict(custom_fields or {}),
            created_at=now,
            updated_at=now,
        )

        with self._lock_for(commission.id):
            self._commit(
                None, commission, AuditAction.CREATED, actor,
                None, commission_to_dict(commission), notes
            )

        logger.info(
            f"Created commission {commission.id} for deal {deal_id}: "
            f"${commission.amount:,.2f} ({commission.type.value})"
        )
        return commission

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        commission_id: str,
        target: CommissionStatus,
        actor: Actor,
        notes: Optional[str] = None
    ) -> Commission:
        self.repository.require(commission_id)
        with self._lock_for(commission_id):
            current = self.repository.require(commission_id)
            return self._apply_transition(current, target, actor, notes)

    def _apply_transition(
        self,
        current: Commission,
        target: CommissionStatus,
        actor: Actor,
        notes: Optional[str] = None
    ) -> Commission:
        """Check and commit one status change. The caller holds the commission's lock."""
        if not can_transition(current.status, target):
            logger.warning(
                f"Refused {current.status.value} -> {target.value} "
                f"for commission {current.id} by {actor.user_id}"
            )
            raise InvalidTransition(current.status, target)

        now = datetime.now()
        changes: Dict[str, Any] = {'status': target, 'updated_at': now}
        if target == CommissionStatus.APPROVED:
            changes['approved_at'] = now
        elif target == CommissionStatus.PAID:
            paid_date = now
            if current.approved_at and current.approved_at > paid_date:
                paid_date = current.approved_at
            changes['paid_date'] = paid_date

        updated = replace(current, **changes)
        self._commit(
            current, updated, TRANSITION_ACTIONS[target], actor,
            status_snapshot(current), status_snapshot(updated), notes
        )

        logger.info(
            f"Commission {current.id}: {current.status.value} -> {target.value} "
            f"by {actor.user_id}"
        )
        return updated

    def approve(self, commission_id: str, actor: Actor, notes: Optional[str] = None) -> Commission:
        """PENDING -> APPROVED."""
        return self._transition(commission_id, CommissionStatus.APPROVED, actor, notes)

    def reject(self, commission_id: str, actor: Actor, notes: Optional[str] = None) -> Commission:
        """PENDING -> CANCELLED, recorded as a rejection."""
        return self._transition(commission_id, CommissionStatus.CANCELLED, actor, notes)

    def mark_paid(self, commission_id: str, actor: Actor, notes: Optional[str] = None) -> Commission:
        """APPROVED -> PAID; stamps the paid date."""
        return self._transition(commission_id, CommissionStatus.PAID, actor, notes)

    def update_status(
        self,
        commission_id: str,
        new_status: Union[CommissionStatus, str],
        actor: Actor,
        notes: Optional[str] = None
    ) -> Commission:
        """Generic status change, held to the same rules as the named operations."""
        new_status = self._parse_status(new_status)
        if new_status not in TRANSITION_ACTIONS:
            # Nothing ever moves back to PENDING
            current = self.repository.require(commission_id)
            raise InvalidTransition(current.status, new_status)
        return self._transition(commission_id, new_status, actor, notes)

    # ------------------------------------------------------------------
    # Other edits
    # ------------------------------------------------------------------

    def update(
        self,
        commission_id: str,
        changes: Dict[str, Any],
        actor: Actor,
        notes: Optional[str] = None
    ) -> Commission:
        """Edit notes/custom fields; a "status" key is applied through the state machine.

        The status is checked before anything is written, and the field edit
        and the status change run under one hold of the commission's lock.
        """
        changes = dict(changes)
        new_status = changes.pop('status', None)

        unknown = [k for k in changes if k not in EDITABLE_FIELDS]
        if unknown:
            raise ValidationError(
                f"Cannot update commission fields: {', '.join(unknown)}",
                {'fields': unknown}
            )
        if new_status is not None:
            new_status = self._parse_status(new_status)

        self.repository.require(commission_id)
        with self._lock_for(commission_id):
            current = self.repository.require(commission_id)
            if new_status is not None and not can_transition(current.status, new_status):
                raise InvalidTransition(current.status, new_status)

            updated = current
            if changes:
                if 'custom_fields' in changes:
                    changes['custom_fields'] = dict(changes['custom_fields'] or {})
                updated = replace(current, updated_at=datetime.now(), **changes)
                self._commit(
                    current, updated, AuditAction.UPDATED, actor,
                    {k: getattr(current, k) for k in changes},
                    {k: getattr(updated, k) for k in changes},
                    notes
                )
                logger.info(f"Updated commission {commission_id}: {', '.join(changes)}")

            if new_status is not None:
                updated = self._apply_transition(updated, new_status, actor, notes)

        return updated
