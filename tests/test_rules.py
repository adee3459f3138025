"""Tests for commission rule validation and evaluation."""

import pytest

from commission_engine.core.errors import RuleNotFound, ValidationError
from commission_engine.rules import (
    CommissionTier,
    FlatRule,
    PercentageRule,
    RuleType,
    TieredRule,
    evaluate,
    evaluate_rule_id,
    rule_errors,
    select_tier,
    validate_rule,
)
from commission_engine.rules.models import rule_from_dict


@pytest.fixture
def standard_tiers():
    """0-50000 @3%, 50000-100000 @5%, 100000+ @7%."""
    return [
        CommissionTier(min_amount=0, max_amount=50000, rate=3),
        CommissionTier(min_amount=50000, max_amount=100000, rate=5),
        CommissionTier(min_amount=100000, max_amount=None, rate=7),
    ]


@pytest.fixture
def tiered_rule(standard_tiers):
    return TieredRule(id="tiered", name="Tiered Sales Commission", tiers=standard_tiers)


class TestRuleValidation:
    """Tests for rule invariants."""

    def test_valid_rules_pass(self, tiered_rule):
        """Well-formed rules of every variant validate."""
        assert rule_errors(FlatRule(id="f", name="Bonus", amount=500)) == []
        assert rule_errors(PercentageRule(id="p", name="Standard", rate=5)) == []
        assert rule_errors(tiered_rule) == []
        assert validate_rule(tiered_rule) is tiered_rule

    def test_variant_tags(self):
        """Each variant carries its own type tag."""
        assert FlatRule(id="f", name="x").type == RuleType.FLAT
        assert PercentageRule(id="p", name="x").type == RuleType.PERCENTAGE
        assert TieredRule(id="t", name="x").type == RuleType.TIERED

    def test_negative_flat_amount(self):
        """Flat amount below zero is rejected."""
        with pytest.raises(ValidationError):
            validate_rule(FlatRule(id="f", name="Bad", amount=-1))

    def test_percentage_bounds(self):
        """Percentage rate must be within 0-100."""
        assert rule_errors(PercentageRule(id="p", name="Low", rate=-0.5))
        assert rule_errors(PercentageRule(id="p", name="High", rate=100.5))
        assert rule_errors(PercentageRule(id="p", name="Edge", rate=100)) == []
        assert rule_errors(PercentageRule(id="p", name="Zero", rate=0)) == []

    def test_name_required(self):
        """Blank names are rejected."""
        errors = rule_errors(FlatRule(id="f", name="  ", amount=10))
        assert any("name" in e for e in errors)

    def test_tiered_requires_tiers(self):
        """A tiered rule with no tiers is not usable."""
        with pytest.raises(ValidationError) as exc:
            validate_rule(TieredRule(id="t", name="Empty"))
        assert "at least one tier" in exc.value.message

    def test_tier_gap_rejected(self):
        """0-50000 followed by 60000+ leaves a gap."""
        rule = TieredRule(id="t", name="Gap", tiers=[
            CommissionTier(min_amount=0, max_amount=50000, rate=3),
            CommissionTier(min_amount=60000, max_amount=None, rate=5),
        ])
        with pytest.raises(ValidationError) as exc:
            validate_rule(rule)
        assert any("Gap" in e for e in exc.value.details['errors'])

    def test_tier_overlap_rejected(self):
        """A tier ending above the next tier's minimum overlaps it."""
        rule = TieredRule(id="t", name="Overlap", tiers=[
            CommissionTier(min_amount=0, max_amount=70000, rate=3),
            CommissionTier(min_amount=50000, max_amount=None, rate=5),
        ])
        errors = rule_errors(rule)
        assert any("Overlapping" in e for e in errors)

    def test_only_last_tier_unbounded(self):
        """An unbounded tier followed by another tier is rejected."""
        rule = TieredRule(id="t", name="Early open end", tiers=[
            CommissionTier(min_amount=0, max_amount=None, rate=3),
            CommissionTier(min_amount=50000, max_amount=None, rate=5),
        ])
        errors = rule_errors(rule)
        assert any("unbounded" in e for e in errors)

    def test_tiers_checked_in_sorted_order(self, standard_tiers):
        """Tiers given out of order are sorted before the contiguity check."""
        rule = TieredRule(id="t", name="Shuffled", tiers=list(reversed(standard_tiers)))
        assert rule_errors(rule) == []

    @pytest.mark.parametrize("rate", [float("nan"), float("inf"), None])
    def test_percentage_rate_must_be_finite(self, rate):
        """NaN, infinity and missing rates never pass validation."""
        rule = PercentageRule(id="p", name="Odd", rate=rate)
        assert any("finite" in e for e in rule_errors(rule))
        with pytest.raises(ValidationError):
            validate_rule(rule)

    def test_flat_amount_must_be_finite(self):
        assert rule_errors(FlatRule(id="f", name="Odd", amount=float("nan")))

    def test_tier_values_must_be_finite(self):
        """Bad tier numbers are reported instead of breaking the sort."""
        rule = TieredRule(id="t", name="Odd", tiers=[
            CommissionTier(min_amount=None, max_amount=50000, rate=3),
            CommissionTier(min_amount=50000, max_amount=None, rate=float("nan")),
        ])
        errors = rule_errors(rule)
        assert any("min_amount" in e for e in errors)
        assert any("rate" in e for e in errors)

    def test_tier_without_minimum_rejected(self):
        with pytest.raises(ValidationError) as exc:
            rule_from_dict({'id': "t", 'name': "Odd", 'type': "tiered", 'tiers': [{'rate': 3}]})
        assert "min_amount" in exc.value.details['errors'][0]

    def test_non_numeric_rate_rejected(self):
        with pytest.raises(ValidationError):
            rule_from_dict({'id': "p", 'name': "Odd", 'type': "percentage", 'rate': None})


class TestEvaluator:
    """Tests for rule evaluation."""

    def test_flat_ignores_deal_amount(self):
        """Flat rules pay the same amount on any deal."""
        rule = FlatRule(id="f", name="Bonus", amount=500)
        for deal_amount in (0, 1, 80000, 1000000):
            result = evaluate(rule, deal_amount)
            assert result.commission == 500
        assert result.breakdown == ("Flat commission: $500.00",)
        assert result.rate == 0

    def test_percentage(self):
        """5% of 100000 is 5000."""
        rule = PercentageRule(id="p", name="Standard", rate=5)
        result = evaluate(rule, 100000)
        assert result.commission == 5000
        assert result.rate == 5
        assert result.breakdown == ("5% of $100,000.00 = $5,000.00",)

    def test_tiered_shared_boundary_selects_lower_tier(self, tiered_rule):
        """50000 sits on the 0-50000 / 50000-100000 boundary; the lower tier wins."""
        result = evaluate(tiered_rule, 50000)
        assert result.tier.min_amount == 0
        assert result.rate == 3
        assert result.commission == 1500

    def test_tiered_middle_tier(self, tiered_rule):
        """A deal inside the second tier uses its rate."""
        result = evaluate(tiered_rule, 80000)
        assert result.rate == 5
        assert result.commission == 4000

    def test_tiered_upper_boundary_inclusive(self, tiered_rule):
        """100000 matches the 50000-100000 tier, not the open-ended one."""
        result = evaluate(tiered_rule, 100000)
        assert result.tier.max_amount == 100000
        assert result.commission == 5000

    def test_tiered_unbounded(self, tiered_rule):
        """150000 falls in the 100000+ tier: 7% = 10500."""
        result = evaluate(tiered_rule, 150000)
        assert result.tier.is_unbounded
        assert result.commission == 10500
        assert len(result.breakdown) == 2
        assert result.breakdown[0] == "Tier: $100,000.00 to Unlimited"

    def test_tiered_flat_tier_not_multiplied(self):
        """A non-percentage tier pays its rate as a flat amount."""
        rule = TieredRule(id="t", name="Flat tiers", tiers=[
            CommissionTier(min_amount=0, max_amount=10000, rate=100, is_percentage=False),
            CommissionTier(min_amount=10000, max_amount=None, rate=250, is_percentage=False),
        ])
        result = evaluate(rule, 20000)
        assert result.commission == 250
        assert result.breakdown[1] == "Flat amount: $250.00"

    def test_tiered_without_tiers_degrades(self):
        """No tiers gives 0 with an explanation instead of an error."""
        result = evaluate(TieredRule(id="t", name="Empty"), 75000)
        assert result.commission == 0
        assert result.breakdown == ("No tiers defined for this rule",)

    def test_falls_back_to_lowest_tier(self):
        """An amount below every tier uses the first tier in sorted order."""
        tiers = [
            CommissionTier(min_amount=1000, max_amount=5000, rate=2),
            CommissionTier(min_amount=5000, max_amount=None, rate=4),
        ]
        assert select_tier(tiers, 500).min_amount == 1000
        assert select_tier([], 500) is None

    def test_negative_deal_amount_rejected(self):
        """Deal amounts must be non-negative."""
        with pytest.raises(ValidationError):
            evaluate(PercentageRule(id="p", name="Standard", rate=5), -1)

    @pytest.mark.parametrize("deal_amount", [float("nan"), float("inf"), None])
    def test_non_finite_deal_amount_rejected(self, tiered_rule, deal_amount):
        with pytest.raises(ValidationError):
            evaluate(tiered_rule, deal_amount)

    def test_result_is_a_snapshot(self, tiered_rule):
        """Changing the rule afterwards leaves an earlier result alone."""
        result = evaluate(tiered_rule, 65000)
        assert isinstance(result.breakdown, tuple)
        assert result.tier.rate == 5

        for tier in tiered_rule.tiers:
            tier.rate = 99
        assert result.tier.rate == 5
        assert result.commission == 3250

    def test_evaluation_is_repeatable(self, tiered_rule):
        """Same inputs, same output, rule left untouched."""
        tiers_before = [t.rate for t in tiered_rule.tiers]
        first = evaluate(tiered_rule, 65000)
        second = evaluate(tiered_rule, 65000)
        assert first == second
        assert [t.rate for t in tiered_rule.tiers] == tiers_before

    def test_evaluate_rule_id(self, tiered_rule):
        """Lookup by id evaluates or raises RuleNotFound."""
        rules = {tiered_rule.id: tiered_rule}
        assert evaluate_rule_id(rules, "tiered", 150000).commission == 10500
        with pytest.raises(RuleNotFound):
            evaluate_rule_id(rules, "missing", 100)
