"""Tests for rule payload parsing."""

import pytest

from commission_engine.core.errors import ValidationError
from commission_engine.schemas import (
    FlatRulePayload,
    TieredRulePayload,
    parse_rule_file,
    parse_rule_payload,
    payload_to_create_kwargs,
)


class TestRulePayloads:
    """Tests for pydantic rule payloads."""

    def test_discriminates_on_type(self):
        payload = parse_rule_payload({'name': "Bonus", 'type': "flat", 'amount': 500})
        assert isinstance(payload, FlatRulePayload)
        assert payload.applies_to == ["all"]

    def test_tiered_payload(self):
        payload = parse_rule_payload({
            'name': "Tiered",
            'type': "tiered",
            'tiers': [
                {'min_amount': 0, 'max_amount': 50000, 'rate': 3},
                {'min_amount': 50000, 'rate': 5},
            ],
        })
        assert isinstance(payload, TieredRulePayload)
        kwargs = payload_to_create_kwargs(payload)
        assert kwargs['rule_type'] == "tiered"
        assert kwargs['tiers'][1] == {
            'min_amount': 50000, 'max_amount': None, 'rate': 5, 'is_percentage': True,
        }

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            parse_rule_payload({'name': "Odd", 'type': "bogus"})

    def test_shape_errors_listed(self):
        with pytest.raises(ValidationError) as exc:
            parse_rule_payload({'name': "", 'type': "percentage", 'rate': "lots"})
        assert len(exc.value.details['errors']) == 2

    def test_negative_tier_rejected(self):
        with pytest.raises(ValidationError):
            parse_rule_payload({
                'name': "Tiered", 'type': "tiered",
                'tiers': [{'min_amount': -1, 'rate': 3}],
            })

    def test_rule_file_forms(self):
        rules = [{'name': "Standard", 'type': "percentage", 'rate': 5}]
        assert len(parse_rule_file(rules)) == 1
        assert len(parse_rule_file({'rules': rules})) == 1
        with pytest.raises(ValidationError):
            parse_rule_file({'rules': "nope"})
