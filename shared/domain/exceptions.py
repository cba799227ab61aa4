"""
Domain Error Taxonomy

Every error raised by the booking core belongs to one of three families:
- BusinessError: a precondition of the operation does not hold; never retried
- TransientError: the storage layer could not complete the work in time;
  safe for the caller to retry later
- ExternalDependencyError: a third-party system (payment gateway) failed

The DRF exception handler in shared.infrastructure.exception_handler maps
these families onto HTTP responses.
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for all errors of the booking core"""

    code = "domain_error"
    http_status = 400
    default_message = "The request could not be processed."

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        if code:
            self.code = code
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        """Message that is safe to show to API clients"""
        return self.message

    def to_dict(self) -> dict:
        payload = {"code": self.code, "detail": self.public_message}
        if self.details:
            payload["meta"] = self.details
        return payload


class BusinessError(DomainError):
    """A business rule rejected the operation. Not retryable."""

    code = "business_error"
    http_status = 422
    retryable = False


class TransientError(DomainError):
    """The operation may succeed if attempted again later."""

    code = "transient_error"
    http_status = 503
    retryable = True


class ExternalDependencyError(DomainError):
    """A third-party service failed or returned an unexpected answer."""

    code = "external_dependency_error"
    http_status = 502
    retryable = False
