"""User-visible error taxonomy.

Every error that reaches a caller carries a machine-readable `kind`, an HTTP
status and a human-readable detail. State conflicts always include the
listing's current state so clients can resynchronize.

Kinds:
    validation      400  missing or malformed input, never retried
    authorization   403  ownership or buyer mismatch, never retried
    not_found       404  unknown listing
    state_conflict  400/409/410  wrong status for the transition
    rate_limited    429  per-identity mint allowance used up for now
    dependency      502/503  document store, wallet or relays failed, retry later
    reconciliation_required  409  a seller payout may have left escrow, never retried
"""
import re
from typing import Any, Dict, Optional

TOKEN_ID_PATTERN = re.compile(r'[0-9a-fA-F]{64}')

class ServiceError(Exception):
    """Base exception for user-visible errors"""
    kind = 'internal'
    status_code = 500

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for an error response body"""
        return {'kind': self.kind, 'detail': self.detail}

class ValidationError(ServiceError):
    """Missing or malformed request fields"""
    kind = 'validation'
    status_code = 400

class AuthorizationError(ServiceError):
    """Caller is not allowed to perform the operation"""
    kind = 'authorization'
    status_code = 403

class NotFoundError(ServiceError):
    """Requested entity does not exist"""
    kind = 'not_found'
    status_code = 404

class StateConflictError(ServiceError):
    """Listing is in the wrong state for the requested transition.

    Status codes follow the current state: 409 when already sold, 410 when
    cancelled, 400 otherwise.
    """
    kind = 'state_conflict'

    def __init__(self, detail: str, current_state: Optional[str], status_code: Optional[int] = None):
        self.current_state = current_state
        if status_code is None:
            status_code = {'sold': 409, 'cancelled': 410}.get(current_state, 400)
        super().__init__(detail, status_code)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['currentState'] = self.current_state
        return data

class RateLimitedError(ServiceError):
    """Mint allowance exhausted"""
    kind = 'rate_limited'
    status_code = 429

class DependencyError(ServiceError):
    """External dependency failed; safe to retry"""
    kind = 'dependency'
    status_code = 503

    def __init__(self, detail: str, dependency: str, status_code: Optional[int] = None):
        self.dependency = dependency
        super().__init__(detail, status_code)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['dependency'] = self.dependency
        return data

class ReconciliationRequiredError(ServiceError):
    """A seller payout was attempted and its outcome is unknown.

    The listing keeps its payout marker until an operator checks the wallet,
    so the swap is never sent twice.
    """
    kind = 'reconciliation_required'
    status_code = 409

    def __init__(self, detail: str, current_state: Optional[str]):
        self.current_state = current_state
        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['currentState'] = self.current_state
        return data

def is_token_id(value: Any) -> bool:
    """Check for a 32-byte hex token id."""
    return isinstance(value, str) and bool(TOKEN_ID_PATTERN.fullmatch(value))

def validate_token_id(value: Any) -> str:
    """Return the lower-cased token id or raise ValidationError."""
    if not is_token_id(value):
        raise ValidationError("tokenId must be 64 hex characters")
    return value.lower()

def require(value: Any, name: str) -> Any:
    """Raise ValidationError if a required field is missing or blank."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing required field: {name}")
    return value

__all__ = [
    'is_token_id',
    'validate_token_id',
    'require',
    'ServiceError',
    'ValidationError',
    'AuthorizationError',
    'NotFoundError',
    'StateConflictError',
    'RateLimitedError',
    'DependencyError',
    'ReconciliationRequiredError'
]
