"""Commission rule variants and their validation."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import math
import uuid

from ..core.errors import ValidationError


ALL_CATEGORIES = "all"


class RuleType(Enum):
    """Commission rule variants."""
    FLAT = "flat"
    PERCENTAGE = "percentage"
    TIERED = "tiered"


@dataclass
class CommissionTier:
    """One contiguous deal-amount range within a tiered rule."""
    min_amount: float
    max_amount: Optional[float] = None  # None = unbounded above
    rate: float = 0
    is_percentage: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    @property
    def is_unbounded(self) -> bool:
        return self.max_amount is None

    def contains(self, amount: float) -> bool:
        """Both ends are inclusive."""
        return amount >= self.min_amount and (self.max_amount is None or amount <= self.max_amount)

    def describe_range(self) -> str:
        upper = "Unlimited" if self.max_amount is None else f"${self.max_amount:,.2f}"
        return f"${self.min_amount:,.2f} to {upper}"


@dataclass
class _RuleBase:
    id: str
    name: str
    is_active: bool = True
    applies_to: List[str] = field(default_factory=lambda: [ALL_CATEGORIES])
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def applies_to_category(self, category: str) -> bool:
        return ALL_CATEGORIES in self.applies_to or category in self.applies_to


@dataclass
class FlatRule(_RuleBase):
    """Fixed payout regardless of deal amount."""
    amount: float = 0
    type: RuleType = field(default=RuleType.FLAT, init=False)


@dataclass
class PercentageRule(_RuleBase):
    """Percent of the deal amount; rate is expressed in percent (5 = 5%)."""
    rate: float = 0
    type: RuleType = field(default=RuleType.PERCENTAGE, init=False)


@dataclass
class TieredRule(_RuleBase):
    """Rate picked from the tier containing the deal amount."""
    tiers: List[CommissionTier] = field(default_factory=list)
    type: RuleType = field(default=RuleType.TIERED, init=False)

    def sorted_tiers(self) -> List[CommissionTier]:
        return sorted(self.tiers, key=lambda t: t.min_amount)


CommissionRule = Union[FlatRule, PercentageRule, TieredRule]


def _is_finite_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def rule_errors(rule: CommissionRule) -> List[str]:
    """Check a rule against its invariants. Returns errors (empty = OK)."""
    errors = []

    if not rule.name or not rule.name.strip():
        errors.append("Rule name is required")
    if not rule.applies_to:
        errors.append("Rule must apply to at least one deal category")

    if rule.type == RuleType.FLAT:
        if not _is_finite_number(rule.amount):
            errors.append(f"Flat amount must be a finite number (got {rule.amount!r})")
        elif rule.amount < 0:
            errors.append(f"Flat amount must be >= 0 (got {rule.amount})")

    elif rule.type == RuleType.PERCENTAGE:
        if not _is_finite_number(rule.rate):
            errors.append(f"Percentage rate must be a finite number (got {rule.rate!r})")
        elif rule.rate < 0 or rule.rate > 100:
            errors.append(f"Percentage rate must be between 0 and 100 (got {rule.rate})")

    elif rule.type == RuleType.TIERED:
        errors.extend(_tier_errors(rule.tiers))

    else:
        errors.append(f"Unknown rule type: {rule.type}")

    return errors


def _tier_errors(tiers: List[CommissionTier]) -> List[str]:
    if not tiers:
        return ["Tiered rule requires at least one tier"]

    errors = []
    for tier in tiers:
        for name in ("min_amount", "rate"):
            if not _is_finite_number(getattr(tier, name)):
                errors.append(f"Tier {name} must be a finite number (got {getattr(tier, name)!r})")
        if tier.max_amount is not None and not _is_finite_number(tier.max_amount):
            errors.append(f"Tier max_amount must be a finite number or empty (got {tier.max_amount!r})")
    if errors:
        return errors

    ordered = sorted(tiers, key=lambda t: t.min_amount)

    for tier in ordered:
        if tier.min_amount < 0:
            errors.append(f"Tier minimum must be >= 0 (got {tier.min_amount})")
        if tier.max_amount is not None and tier.max_amount <= tier.min_amount:
            errors.append(
                f"Tier maximum {tier.max_amount} must be greater than its minimum {tier.min_amount}"
            )
        if tier.rate < 0:
            errors.append(f"Tier rate must be >= 0 (got {tier.rate})")
        elif tier.is_percentage and tier.rate > 100:
            errors.append(f"Tier percentage must be <= 100 (got {tier.rate})")

    for current, following in zip(ordered, ordered[1:]):
        if current.max_amount is None:
            errors.append(
                f"Only the last tier may be unbounded (tier starting at {current.min_amount})"
            )
        elif current.max_amount < following.min_amount:
            errors.append(
                f"Gap between tiers: {current.max_amount} to {following.min_amount}"
            )
        elif current.max_amount > following.min_amount:
            errors.append(
                f"Overlapping tiers: {current.max_amount} exceeds next minimum {following.min_amount}"
            )

    return errors


def validate_rule(rule: CommissionRule) -> CommissionRule:
    """Raise ValidationError if the rule breaks an invariant."""
    errors = rule_errors(rule)
    if errors:
        raise ValidationError(
            f"Invalid commission rule '{rule.name}': {'; '.join(errors)}",
            {'errors': errors, 'rule_id': rule.id}
        )
    return rule


def tier_to_dict(tier: CommissionTier) -> Dict[str, Any]:
    return {
        'id': tier.id,
        'min_amount': tier.min_amount,
        'max_amount': tier.max_amount,
        'rate': tier.rate,
        'is_percentage': tier.is_percentage,
    }


def tier_from_dict(t: Dict[str, Any]) -> CommissionTier:
    tier = CommissionTier(
        min_amount=float(t['min_amount']),
        max_amount=float(t['max_amount']) if t.get('max_amount') is not None else None,
        rate=float(t.get('rate', 0)),
        is_percentage=t.get('is_percentage', True),
    )
    if t.get('id'):
        tier.id = t['id']
    return tier


def rule_to_dict(rule: CommissionRule) -> Dict[str, Any]:
    data = {
        'id': rule.id,
        'name': rule.name,
        'type': rule.type.value,
        'is_active': rule.is_active,
        'applies_to': list(rule.applies_to),
        'created_at': rule.created_at.isoformat(),
        'updated_at': rule.updated_at.isoformat(),
    }
    if rule.type == RuleType.FLAT:
        data['amount'] = rule.amount
    elif rule.type == RuleType.PERCENTAGE:
        data['rate'] = rule.rate
    elif rule.type == RuleType.TIERED:
        data['tiers'] = [tier_to_dict(t) for t in rule.tiers]
    return data


def rule_from_dict(r: Dict[str, Any]) -> CommissionRule:
    try:
        rule_type = RuleType(r['type'])
    except (KeyError, TypeError, ValueError):
        raise ValidationError(f"Invalid commission rule type: {r.get('type')!r}")

    try:
        common = dict(
            id=r['id'],
            name=r.get('name', ''),
            is_active=r.get('is_active', True),
            applies_to=list(r.get('applies_to') or [ALL_CATEGORIES]),
            created_at=_parse_datetime(r.get('created_at')),
            updated_at=_parse_datetime(r.get('updated_at')),
        )

        if rule_type == RuleType.FLAT:
            return FlatRule(amount=float(r.get('amount', 0)), **common)
        if rule_type == RuleType.PERCENTAGE:
            return PercentageRule(rate=float(r.get('rate', 0)), **common)
        return TieredRule(
            tiers=[t if isinstance(t, CommissionTier) else tier_from_dict(t) for t in r.get('tiers') or []],
            **common
        )
    except KeyError as e:
        raise ValidationError(f"Commission rule is missing field {e}", {'errors': [f"Missing field {e}"]}) from e
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid commission rule value: {e}", {'errors': [str(e)]}) from e


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value) if value else datetime.now()
