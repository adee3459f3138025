"""
Commission engine exceptions.

Every error carries a machine-readable code and a details dict so callers
can translate it into a form error or an API response.
"""


class CommissionEngineError(Exception):
    """Base exception for commission engine errors."""
    error_code = 'commission_error'

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self):
        return {
            'error': self.error_code,
            'message': self.message,
            'details': self.details
        }


class ValidationError(CommissionEngineError):
    """Rule or commission shape violates an invariant."""
    error_code = 'validation_error'


class InvalidTransition(CommissionEngineError):
    """Status change not allowed from the current status."""
    error_code = 'invalid_transition'

    def __init__(self, current, target, message: str = None):
        current_value = getattr(current, 'value', current)
        target_value = getattr(target, 'value', target)
        super().__init__(
            message or f"Invalid transition from '{current_value}' to '{target_value}'.",
            {'from': current_value, 'to': target_value}
        )
        self.current = current
        self.target = target


class NotFoundError(CommissionEngineError):
    """Lookup failed."""
    error_code = 'not_found'
    kind = 'object'

    def __init__(self, object_id: str):
        super().__init__(f"{self.kind} {object_id} not found", {'id': object_id})
        self.object_id = object_id


class RuleNotFound(NotFoundError):
    kind = 'Commission rule'


class CommissionNotFound(NotFoundError):
    kind = 'Commission'


class EntryNotFound(NotFoundError):
    kind = 'Audit entry'


class PersistenceError(CommissionEngineError):
    """The save collaborator failed; the mutation was rolled back."""
    error_code = 'persistence_error'


class Forbidden(CommissionEngineError):
    """Actor may not perform this change."""
    error_code = 'forbidden'
