"""Commission rule evaluation.

Pure functions: the result depends only on the rule snapshot and the deal
amount, so evaluation is safe to repeat or run from several threads.
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple
import math

from ..core.errors import RuleNotFound, ValidationError
from .models import CommissionRule, CommissionTier, RuleType


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of applying a rule to a deal amount."""
    rule_id: str
    rule_type: RuleType
    deal_amount: float
    commission: float
    rate: float = 0  # Percent rate or per-tier rate applied; 0 for flat rules
    breakdown: Tuple[str, ...] = ()
    tier: Optional[CommissionTier] = None  # Copy of the matched tier


def _money(value: float) -> str:
    return f"${value:,.2f}"


def _rate(value: float) -> str:
    return f"{value:g}%"


def select_tier(tiers: List[CommissionTier], deal_amount: float) -> Optional[CommissionTier]:
    """First tier in ascending min_amount order whose inclusive range holds the amount.

    A deal exactly on a shared boundary (e.g. 50000 with tiers 0-50000 and
    50000-100000) matches the lower tier. Falls back to the lowest tier when
    nothing matches.
    """
    ordered = sorted(tiers, key=lambda t: t.min_amount)
    if not ordered:
        return None
    for tier in ordered:
        if tier.contains(deal_amount):
            return tier
    return ordered[0]


def evaluate(rule: CommissionRule, deal_amount: float) -> EvaluationResult:
    """Compute the commission a rule pays on a deal amount."""
    if not isinstance(deal_amount, (int, float)) or not math.isfinite(deal_amount) or deal_amount < 0:
        raise ValidationError(
            f"Deal amount must be a finite number >= 0 (got {deal_amount!r})",
            {'deal_amount': deal_amount}
        )

    if rule.type == RuleType.FLAT:
        commission = round(rule.amount, 2)
        return EvaluationResult(
            rule_id=rule.id,
            rule_type=rule.type,
            deal_amount=deal_amount,
            commission=commission,
            breakdown=(f"Flat commission: {_money(commission)}",),
        )

    if rule.type == RuleType.PERCENTAGE:
        commission = round(deal_amount * rule.rate / 100, 2)
        return EvaluationResult(
            rule_id=rule.id,
            rule_type=rule.type,
            deal_amount=deal_amount,
            commission=commission,
            rate=rule.rate,
            breakdown=(f"{_rate(rule.rate)} of {_money(deal_amount)} = {_money(commission)}",),
        )

    if rule.type == RuleType.TIERED:
        tier = select_tier(rule.tiers, deal_amount)
        if tier is None:
            return EvaluationResult(
                rule_id=rule.id,
                rule_type=rule.type,
                deal_amount=deal_amount,
                commission=0,
                breakdown=("No tiers defined for this rule",),
            )

        breakdown = [f"Tier: {tier.describe_range()}"]
        if tier.is_percentage:
            commission = round(deal_amount * tier.rate / 100, 2)
            breakdown.append(f"{_rate(tier.rate)} of {_money(deal_amount)} = {_money(commission)}")
        else:
            # Flat amount for the tier, not multiplied by the deal amount
            commission = round(tier.rate, 2)
            breakdown.append(f"Flat amount: {_money(commission)}")

        return EvaluationResult(
            rule_id=rule.id,
            rule_type=rule.type,
            deal_amount=deal_amount,
            commission=commission,
            rate=tier.rate,
            breakdown=tuple(breakdown),
            tier=replace(tier),
        )

    raise ValidationError(f"Unknown rule type: {rule.type}")


def evaluate_rule_id(
    rules: Dict[str, CommissionRule],
    rule_id: str,
    deal_amount: float
) -> EvaluationResult:
    """Look up a rule by id and evaluate it."""
    rule = rules.get(rule_id)
    if rule is None:
        raise RuleNotFound(rule_id)
    return evaluate(rule, deal_amount)
