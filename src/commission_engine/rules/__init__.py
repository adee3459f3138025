"""Commission rules: variants, validation, evaluation and storage."""

from .models import (
    RuleType,
    CommissionTier,
    FlatRule,
    PercentageRule,
    TieredRule,
    CommissionRule,
    rule_errors,
    validate_rule,
)
from .evaluator import EvaluationResult, evaluate, evaluate_rule_id, select_tier
from .repository import RuleRepository

__all__ = [
    'RuleType',
    'CommissionTier',
    'FlatRule',
    'PercentageRule',
    'TieredRule',
    'CommissionRule',
    'rule_errors',
    'validate_rule',
    'EvaluationResult',
    'evaluate',
    'evaluate_rule_id',
    'select_tier',
    'RuleRepository'
]
