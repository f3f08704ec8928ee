"""
Destiine Exception Hierarchy

Structured exception classes for the booking core. Every exception carries a
code, a client-facing message and details for logging, plus the HTTP status
the API layer reports it with.

Exception Hierarchy:
    DestiineError
    ├── UnauthenticatedError
    ├── ValidationError
    ├── OfferNotFoundError
    ├── NotReservedError
    ├── UnavailableError
    ├── ExpiredHoldError
    ├── ConflictDetectedError
    └── UpstreamError
"""
import logging
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)


class DestiineError(Exception):
    """
    Base exception for all booking errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        status_code: HTTP status used when the error reaches the API
    """

    default_code: str = "BOOKING_ERROR"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class UnauthenticatedError(DestiineError):
    """No session; every mutating operation is rejected."""
    default_code = "UNAUTHENTICATED"
    status_code = 401


class ValidationError(DestiineError):
    """Malformed or incomplete booking input. Nothing is persisted."""
    default_code = "VALIDATION_FAILED"
    status_code = 400

    def __init__(
        self,
        message: str,
        errors: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        self.errors = errors or {}
        details = kwargs.pop("details", {})
        details["errors"] = self.errors
        super().__init__(message, details=details, **kwargs)


class OfferNotFoundError(DestiineError):
    """The flight or hotel offer could not be found in the catalog."""
    default_code = "OFFER_NOT_FOUND"
    status_code = 404


class NotReservedError(DestiineError):
    """No live reservation matches the lookup."""
    default_code = "NOT_RESERVED"
    status_code = 404


class UnavailableError(DestiineError):
    """Requested unit(s) are held by someone else. No record was created."""
    default_code = "UNITS_UNAVAILABLE"
    status_code = 409

    def __init__(
        self,
        message: str,
        unit_ids: Optional[List[str]] = None,
        **kwargs
    ):
        self.unit_ids = list(unit_ids or [])
        details = kwargs.pop("details", {})
        details["unit_ids"] = self.unit_ids
        super().__init__(message, details=details, **kwargs)


class ExpiredHoldError(DestiineError):
    """The hold's guarantee window elapsed; the record has been expired."""
    default_code = "HOLD_EXPIRED"
    status_code = 410

    def __init__(
        self,
        message: str,
        reservation_code: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["reservation_code"] = reservation_code
        super().__init__(message, details=details, **kwargs)


class ConflictDetectedError(DestiineError):
    """A held unit was found taken by another valid claimant at payment time."""
    default_code = "HOLD_CONFLICT"
    status_code = 409

    def __init__(
        self,
        message: str,
        reservation_code: Optional[str] = None,
        unit_ids: Optional[List[str]] = None,
        **kwargs
    ):
        self.unit_ids = list(unit_ids or [])
        details = kwargs.pop("details", {})
        details.update({
            "reservation_code": reservation_code,
            "unit_ids": self.unit_ids,
        })
        super().__init__(message, details=details, **kwargs)


class UpstreamError(DestiineError):
    """Payment processor, network or otherwise unexpected failure."""
    default_code = "UPSTREAM_FAILURE"
    status_code = 502
