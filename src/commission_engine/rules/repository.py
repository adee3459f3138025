"""Commission rule repository."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import logging
import threading
import uuid

from ..audit.trail import Actor, AuditAction, AuditScope, AuditTrail
from ..core.errors import PersistenceError, RuleNotFound, ValidationError
from ..storage.store import RULES_KEY, KeyValueStore
from .models import (
    CommissionRule,
    CommissionTier,
    RuleType,
    rule_from_dict,
    rule_to_dict,
    validate_rule,
)

logger = logging.getLogger(__name__)

# Fields callers may never change through update()
PROTECTED_FIELDS = ("id", "created_at", "updated_at")


def default_rules() -> List[Dict[str, Any]]:
    """Starter rules for an empty collection."""
    return [
        {
            'name': "Standard Sales Commission",
            'type': RuleType.PERCENTAGE.value,
            'rate': 5,
        },
        {
            'name': "Service Contract Bonus",
            'type': RuleType.FLAT.value,
            'amount': 500,
        },
        {
            'name': "Tiered Sales Commission",
            'type': RuleType.TIERED.value,
            'tiers': [
                {'min_amount': 0, 'max_amount': 50000, 'rate': 3, 'is_percentage': True},
                {'min_amount': 50000, 'max_amount': 100000, 'rate': 5, 'is_percentage': True},
                {'min_amount': 100000, 'max_amount': None, 'rate': 7, 'is_percentage': True},
            ],
        },
    ]


class RuleRepository:
    """Owns the commission rule collection.

    Every mutation is validated first, then persisted as a full snapshot,
    then recorded in the audit trail as a system-scoped entry. If saving
    fails the in-memory collection is put back as it was.
    """

    def __init__(
        self,
        store: KeyValueStore,
        audit_trail: AuditTrail,
        system_actor: Optional[Actor] = None,
        seed_defaults: bool = False
    ):
        self.store = store
        self.audit_trail = audit_trail
        self.system_actor = system_actor or Actor("system", "System")
        self.rules: Dict[str, CommissionRule] = {}
        self._lock = threading.RLock()

        self._load_data()
        if seed_defaults and not self.rules:
            self._create_default_rules()

    def _load_data(self):
        """Load rules from storage."""
        for r in self.store.load(RULES_KEY, []):
            try:
                rule = rule_from_dict(r)
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.error(f"Unreadable commission rule {r!r}: {e}")
                raise PersistenceError(
                    f"Rule collection contains an unreadable record: {e}", {'record': r}
                ) from e
            self.rules[rule.id] = rule

    def _save_data(self):
        """Save rules to storage."""
        self.store.save(RULES_KEY, [rule_to_dict(r) for r in self.rules.values()])

    def _create_default_rules(self):
        for data in default_rules():
            self.create(
                name=data['name'],
                rule_type=data['type'],
                amount=data.get('amount', 0),
                rate=data.get('rate', 0),
                tiers=data.get('tiers'),
            )
        logger.info(f"Seeded {len(self.rules)} default commission rules")

    def _commit(
        self,
        before: Dict[str, CommissionRule],
        subject_id: str,
        action: AuditAction,
        actor: Optional[Actor],
        previous_value: Optional[Dict[str, Any]],
        new_value: Optional[Dict[str, Any]],
        notes: str = ""
    ):
        """Persist rules and the matching audit entry, or neither."""
        actor = actor or self.system_actor
        try:
            self._save_data()
            self.audit_trail.record(
                subject_id=subject_id,
                action=action,
                user_id=actor.user_id,
                user_name=actor.user_name,
                previous_value=previous_value,
                new_value=new_value,
                notes=notes,
                scope=AuditScope.SYSTEM,
            )
        except Exception as e:
            self.rules = before
            try:
                self._save_data()
            except Exception as restore_error:
                logger.error(f"Could not restore commission rules after failed save: {restore_error}")
            raise PersistenceError(f"Failed to save commission rule {subject_id}: {e}") from e

    @staticmethod
    def _from_data(rule_id: str, data: Dict[str, Any]) -> CommissionRule:
        data = dict(data, id=rule_id)
        if isinstance(data.get('type'), RuleType):
            data['type'] = data['type'].value
        return rule_from_dict(data)

    def build(
        self,
        name: str,
        rule_type: Union[RuleType, str],
        amount: float = 0,
        rate: float = 0,
        tiers: Optional[List[Union[CommissionTier, Dict[str, Any]]]] = None,
        is_active: bool = True,
        applies_to: Optional[List[str]] = None
    ) -> CommissionRule:
        """Construct and validate a rule without storing it."""
        try:
            rule_type = RuleType(rule_type)
        except ValueError:
            raise ValidationError(f"Invalid commission rule type: {rule_type!r}")
        now = datetime.now()
        data: Dict[str, Any] = {
            'name': name,
            'type': rule_type.value,
            'is_active': is_active,
            'applies_to': applies_to,
            'created_at': now,
            'updated_at': now,
        }
        if rule_type == RuleType.FLAT:
            data['amount'] = amount
        elif rule_type == RuleType.PERCENTAGE:
            data['rate'] = rate
        else:
            data['tiers'] = list(tiers or [])

        return validate_rule(self._from_data(str(uuid.uuid4())[:12], data))

    def create(self, name: str, rule_type: Union[RuleType, str], actor: Optional[Actor] = None,
               **fields) -> CommissionRule:
        """Create and store a new rule."""
        return self.add(self.build(name, rule_type, **fields), actor)

    def add(self, rule: CommissionRule, actor: Optional[Actor] = None) -> CommissionRule:
        """Store a rule made by build()."""
        validate_rule(rule)
        with self._lock:
            if rule.id in self.rules:
                raise ValidationError(f"Commission rule {rule.id} already exists", {"rule_id": rule.id})
            before = dict(self.rules)
            self.rules[rule.id] = rule
            self._commit(before, rule.id, AuditAction.CREATED, actor, None, rule_to_dict(rule))

        logger.info(f"Created {rule.type.value} commission rule {rule.id} ({rule.name})")
        return rule

    def update(
        self,
        rule_id: str,
        changes: Dict[str, Any],
        actor: Optional[Actor] = None
    ) -> CommissionRule:
        """Apply a partial update; the result must still be a valid rule."""
        protected = [k for k in changes if k in PROTECTED_FIELDS]
        if protected:
            raise ValidationError(
                f"Cannot update protected rule fields: {', '.join(protected)}",
                {'fields': protected}
            )

        with self._lock:
            rule = self.require(rule_id)
            previous = rule_to_dict(rule)

            merged = dict(previous)
            merged.update(changes)
            merged['updated_at'] = datetime.now()
            updated = validate_rule(self._from_data(rule_id, merged))

            before = dict(self.rules)
            self.rules[rule_id] = updated
            self._commit(before, rule_id, AuditAction.UPDATED, actor, previous, rule_to_dict(updated))

        logger.info(f"Updated commission rule {rule_id}")
        return updated

    def activate(self, rule_id: str, actor: Optional[Actor] = None) -> CommissionRule:
        return self.update(rule_id, {'is_active': True}, actor)

    def deactivate(self, rule_id: str, actor: Optional[Actor] = None) -> CommissionRule:
        return self.update(rule_id, {'is_active': False}, actor)

    def delete(self, rule_id: str, actor: Optional[Actor] = None) -> CommissionRule:
        """Remove a rule. Commissions keep their own type/rate snapshot."""
        with self._lock:
            rule = self.require(rule_id)
            before = dict(self.rules)
            del self.rules[rule_id]
            self._commit(before, rule_id, AuditAction.DELETED, actor, rule_to_dict(rule), None)

        logger.info(f"Deleted commission rule {rule_id} ({rule.name})")
        return rule

    def duplicate(self, rule_id: str, actor: Optional[Actor] = None) -> CommissionRule:
        """Copy a rule under a new id with " (Copy)" appended to its name."""
        with self._lock:
            source = self.require(rule_id)
            now = datetime.now()
            copy_data = rule_to_dict(source)
            copy_data.update(name=f"{source.name} (Copy)", created_at=now, updated_at=now)
            # Tiers get fresh ids so the two rules never share tier records
            if 'tiers' in copy_data:
                copy_data['tiers'] = [dict(t, id=None) for t in copy_data['tiers']]

            rule = validate_rule(self._from_data(str(uuid.uuid4())[:12], copy_data))

            before = dict(self.rules)
            self.rules[rule.id] = rule
            self._commit(
                before, rule.id, AuditAction.CREATED, actor, None, rule_to_dict(rule),
                notes=f"Duplicated from {rule_id}"
            )

        logger.info(f"Duplicated commission rule {rule_id} as {rule.id}")
        return rule

    def get(self, rule_id: str) -> Optional[CommissionRule]:
        """Get a rule by ID."""
        return self.rules.get(rule_id)

    def require(self, rule_id: str) -> CommissionRule:
        """Get a rule by ID or raise RuleNotFound."""
        rule = self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFound(rule_id)
        return rule

    def list(self, active_only: bool = False, category: Optional[str] = None) -> List[CommissionRule]:
        """Rules sorted by creation time."""
        rules = [
            r for r in self.rules.values()
            if (not active_only or r.is_active)
            and (category is None or r.applies_to_category(category))
        ]
        rules.sort(key=lambda r: r.created_at)
        return rules

    def as_mapping(self) -> Dict[str, CommissionRule]:
        """Snapshot of rules keyed by id, for evaluation."""
        with self._lock:
            return dict(self.rules)
