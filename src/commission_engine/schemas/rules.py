"""Pydantic models for commission rule payloads (JSON files, API bodies).

These check shape only. Business invariants such as tier contiguity are
checked by rules.models.validate_rule when the repository accepts the rule.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ValidationError


class TierPayload(BaseModel):
    min_amount: float = Field(..., ge=0)
    max_amount: Optional[float] = Field(None, description="Omit for an unbounded last tier")
    rate: float = Field(..., ge=0)
    is_percentage: bool = True


class _RulePayloadBase(BaseModel):
    name: str = Field(..., min_length=1)
    is_active: bool = True
    applies_to: List[str] = Field(default_factory=lambda: ["all"])


class FlatRulePayload(_RulePayloadBase):
    type: Literal["flat"]
    amount: float = 0


class PercentageRulePayload(_RulePayloadBase):
    type: Literal["percentage"]
    rate: float = Field(0, description="Percent of the deal amount, e.g. 5 for 5%")


class TieredRulePayload(_RulePayloadBase):
    type: Literal["tiered"]
    tiers: List[TierPayload] = Field(default_factory=list)


RulePayload = Annotated[
    Union[FlatRulePayload, PercentageRulePayload, TieredRulePayload],
    Field(discriminator="type"),
]

_rule_adapter = TypeAdapter(RulePayload)
_rule_list_adapter = TypeAdapter(List[RulePayload])


def _raise_invalid(e: PydanticValidationError):
    errors = [
        f"{'.'.join(str(part) for part in err['loc']) or 'payload'}: {err['msg']}"
        for err in e.errors()
    ]
    raise ValidationError(f"Invalid rule payload: {'; '.join(errors)}", {'errors': errors}) from e


def parse_rule_payload(data: Dict[str, Any]) -> RulePayload:
    """Validate one rule payload."""
    try:
        return _rule_adapter.validate_python(data)
    except PydanticValidationError as e:
        _raise_invalid(e)


def parse_rule_file(data: Any) -> List[RulePayload]:
    """Accept either a list of rules or {"rules": [...]}."""
    if isinstance(data, dict) and "rules" in data:
        data = data["rules"]
    try:
        return _rule_list_adapter.validate_python(data)
    except PydanticValidationError as e:
        _raise_invalid(e)


def payload_to_create_kwargs(payload: RulePayload) -> Dict[str, Any]:
    """Keyword arguments for RuleRepository.create."""
    kwargs: Dict[str, Any] = {
        'name': payload.name,
        'rule_type': payload.type,
        'is_active': payload.is_active,
        'applies_to': list(payload.applies_to),
    }
    if isinstance(payload, FlatRulePayload):
        kwargs['amount'] = payload.amount
    elif isinstance(payload, PercentageRulePayload):
        kwargs['rate'] = payload.rate
    else:
        kwargs['tiers'] = [tier.model_dump() for tier in payload.tiers]
    return kwargs
