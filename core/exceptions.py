"""
Custom application exceptions.

These exceptions represent business logic errors. The HTTP layer maps each
class to a status code via ``http_status``; ``ConsistencyWarning`` is never
raised to callers and only names a log category for best-effort steps.
"""
from typing import Any, Optional


class MindstaError(Exception):
    """Base exception for all application errors."""

    message: str = "Something went wrong"
    http_status: int = 500

    def __init__(self, message: Optional[str] = None, **kwargs):
        self.message = message or self.message
        self.details = kwargs
        super().__init__(self.message)


# ============== Validation ==============

class ValidationError(MindstaError):
    """Bad input: non-positive amount, empty cart, missing bank details..."""
    message = "Invalid request"
    http_status = 400


# ============== Authentication & Authorization ==============

class AuthenticationError(MindstaError):
    """Missing/invalid bearer token or bad webhook signature."""
    message = "Unauthorized"
    http_status = 401


class PermissionDeniedError(MindstaError):
    """Principal doesn't have permission for this action."""
    message = "Access denied"
    http_status = 403


class AdminOnlyError(PermissionDeniedError):
    """Action is only allowed for administrators."""
    message = "Admin access required"


# ============== Lookup ==============

class NotFoundError(MindstaError):
    """Unknown reference, profile or user."""
    message = "Not found"
    http_status = 404


class PaymentNotFoundError(NotFoundError):
    """Payment record not found for this principal."""
    message = "Payment record not found"

    def __init__(self, reference: Optional[str] = None):
        self.reference = reference
        super().__init__(
            f"Payment record not found: {reference}" if reference else self.message
        )


class ReferralProfileNotFoundError(NotFoundError):
    """Referrer has no profile yet."""
    message = "Referral profile not found"


class ConflictError(MindstaError):
    """Duplicate record."""
    message = "Already exists"
    http_status = 409


# ============== External Services ==============

class UpstreamError(MindstaError):
    """Payment gateway call failed or returned an error payload."""
    message = "Payment gateway error"
    http_status = 502

    def __init__(self, message: Optional[str] = None, payload: Any = None):
        self.payload = payload
        super().__init__(message)


# ============== Best-effort bookkeeping ==============

class ConsistencyWarning(MindstaError):
    """A side effect (enrollment, cart, referral, notification) failed.

    Logged only; never propagated as a failure of the overall operation.
    """
    message = "Auxiliary step failed"
