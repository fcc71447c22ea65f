"""
Title Registry - Error Taxonomy

Every failure a caller can observe carries a stable `code` so the HTTP
boundary can map it to a response without inspecting messages.

Retryable kinds: ConcurrentModificationError, LedgerUnavailableError,
LedgerTimeoutError. Everything else is final for the given input.
"""
from typing import Any, Dict, Optional


class RegistryError(Exception):
    """Base class for all registry errors."""

    code = "REGISTRY_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(RegistryError):
    """Bad input. Never retried automatically."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(RegistryError):
    """Unknown id."""
    code = "NOT_FOUND"
    status_code = 404


class PermissionDeniedError(RegistryError):
    """Actor role is not allowed to perform the operation."""
    code = "PERMISSION_DENIED"
    status_code = 403


class InvalidStateError(RegistryError):
    """Operation is illegal for the entity's current state."""
    code = "INVALID_STATE"
    status_code = 409


class DuplicateApprovalError(RegistryError):
    """Registrar already recorded a decision on this application."""
    code = "DUPLICATE_APPROVAL"
    status_code = 409


class SelfApprovalError(RegistryError):
    """Applicant tried to decide on their own application."""
    code = "SELF_APPROVAL"
    status_code = 403


class DuplicateDisputeError(RegistryError):
    """An active dispute already exists for the property."""
    code = "DUPLICATE_DISPUTE"
    status_code = 409


class ConcurrentModificationError(RegistryError):
    """Optimistic concurrency conflict. Re-read and retry."""
    code = "CONCURRENT_MODIFICATION"
    status_code = 409
    retryable = True


class CertificationInProgressError(ConcurrentModificationError):
    """Another caller holds the certification reservation for this application."""
    code = "CERTIFICATION_IN_PROGRESS"


class PropertyFrozenError(RegistryError):
    """Property is disputed; transfer and certification are blocked."""
    code = "PROPERTY_FROZEN"
    status_code = 423


class LedgerUnavailableError(RegistryError):
    """Ledger submission failed or the ledger reported the transaction failed."""
    code = "LEDGER_UNAVAILABLE"
    status_code = 503
    retryable = True


class LedgerTimeoutError(RegistryError):
    """Ledger confirmation did not arrive before the polling deadline."""
    code = "LEDGER_TIMEOUT"
    status_code = 504
    retryable = True


class AuditLogImmutableError(RegistryError):
    """Raised when code attempts to update or delete an audit entry."""
    code = "AUDIT_IMMUTABLE"
    status_code = 500
