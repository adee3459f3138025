"""Input schemas for commission rules."""

from .rules import (
    TierPayload,
    FlatRulePayload,
    PercentageRulePayload,
    TieredRulePayload,
    RulePayload,
    parse_rule_payload,
    parse_rule_file,
    payload_to_create_kwargs,
)

__all__ = [
    'TierPayload',
    'FlatRulePayload',
    'PercentageRulePayload',
    'TieredRulePayload',
    'RulePayload',
    'parse_rule_payload',
    'parse_rule_file',
    'payload_to_create_kwargs'
]
