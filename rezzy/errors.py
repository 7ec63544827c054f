"""Client-side error taxonomy for calls to the Rezzy backend."""

from __future__ import annotations

from typing import Any, Dict, Optional


class RezzyClientError(Exception):
    """Base class for classified backend failures."""

    kind = "error"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None):
        self.message = message or self.default_message
        self.status_code = status_code
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message}


class BackendUnavailable(RezzyClientError):
    kind = "backend_unavailable"
    default_message = "We couldn't reach the Rezzy servers. Some features may be limited."


class GatewayTimeout(RezzyClientError):
    kind = "timeout"
    default_message = "The request took too long. Please try again."


class QuotaExceeded(RezzyClientError):
    kind = "quota_exceeded"
    default_message = "You've reached the limit for your current plan."

    @property
    def retryable(self) -> bool:
        return False


class ValidationRejected(RezzyClientError):
    kind = "validation_rejected"
    default_message = "The request was rejected. Please check your input."


class ServerFault(RezzyClientError):
    kind = "server_fault"
    default_message = "Something went wrong on our side. Please try again."


class WizardPreconditionError(RuntimeError):
    """Raised when a wizard stage is driven out of order."""
