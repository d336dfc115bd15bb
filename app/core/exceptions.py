# File: app/core/exceptions.py

from typing import Dict, Any, List, Optional
from datetime import datetime


class ReceetsException(Exception):
    """Base exception for all Receets errors."""

    # Failure kind reported at the request boundary
    kind: str = "error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize a Receets exception.

        Args:
            message: Human-readable error message
            code: Optional machine-processable error code
            details: Additional error details
        """
        self.message = message
        self.code = code or "GENERIC_ERROR"
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for API responses.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "success": False,
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "timestamp": datetime.now().isoformat(),
        }


# Domain-specific exceptions
class DomainException(ReceetsException):
    """Base exception for domain-related errors."""

    CODE_PREFIX = "DOMAIN_"


class EntityNotFoundException(DomainException):
    """Raised when a requested entity does not exist."""

    kind = "not_found"

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            f"{entity_type} with ID {entity_id} not found",
            f"{self.CODE_PREFIX}001",
            {"entity_type": entity_type, "entity_id": entity_id},
        )


class SaleNotFoundException(EntityNotFoundException):
    """Raised when a requested sale does not exist."""

    def __init__(self, sale_id: Any):
        super().__init__("Sale", sale_id)


class MerchantNotFoundException(EntityNotFoundException):
    """Raised when a requested merchant does not exist."""

    def __init__(self, merchant_id: Any):
        super().__init__("Merchant", merchant_id)


class LocationNotFoundException(EntityNotFoundException):
    """Raised when a location does not exist for the given merchant."""

    def __init__(self, location_id: Any, merchant_id: Any = None):
        super().__init__("Location", location_id)
        if merchant_id is not None:
            self.details["merchant_id"] = merchant_id


class CustomerNotFoundException(EntityNotFoundException):
    """Raised when a customer cannot be found by ID or customer code."""

    def __init__(self, customer_ref: Any):
        super().__init__("Customer", customer_ref)


class QRCodeNotFoundException(EntityNotFoundException):
    """Raised when a scanned QR code matches no location."""

    def __init__(self, code: Any):
        super().__init__("QR code", code)
        self.message = "Invalid QR code"
        self.args = (self.message,)


# Sale lifecycle exceptions
class InvalidStateException(DomainException):
    """Raised when an operation violates the sale state machine."""

    kind = "invalid_state"

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        allowed_transitions: Optional[List[str]] = None,
    ):
        details: Dict[str, Any] = {}
        if current_status is not None:
            details["current_status"] = current_status
        if allowed_transitions is not None:
            details["allowed_transitions"] = allowed_transitions
        super().__init__(message, f"{self.CODE_PREFIX}002", details)


# Validation exceptions
class ValidationException(ReceetsException):
    """Raised when input validation fails."""

    kind = "validation"

    def __init__(
        self, message: str, validation_errors: Optional[Dict[str, List[str]]] = None
    ):
        super().__init__(
            message, "VALIDATION_001", {"validation_errors": validation_errors or {}}
        )


class DuplicateEntityException(ReceetsException):
    """Raised when an attempt is made to create an entity that already exists."""

    kind = "duplicate"

    def __init__(
        self,
        message: str = "Duplicate entity detected",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, "DUPLICATE_ENTITY", details or {})


# Concurrency exceptions
class ConcurrentModificationException(ReceetsException):
    """Raised when a concurrent modification is detected."""

    kind = "conflict"

    def __init__(
        self,
        message: str,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ):
        details = {}
        if expected_version is not None:
            details["expected_version"] = expected_version
        if actual_version is not None:
            details["actual_version"] = actual_version
        super().__init__(message, "CONCURRENCY_001", details)


# Security exceptions
class SecurityException(ReceetsException):
    """Base exception for security-related errors."""

    CODE_PREFIX = "SECURITY_"


class UnauthorizedException(SecurityException):
    """Raised when the request carries no usable credentials."""

    kind = "unauthorized"

    def __init__(self, message: str = "Unauthorized access"):
        super().__init__(message, f"{self.CODE_PREFIX}001", {})


class PermissionDeniedException(SecurityException):
    """Raised when the principal does not own the referenced resource."""

    kind = "permission"

    def __init__(
        self,
        message: str = "Permission denied",
        resource_type: Optional[str] = None,
        resource_id: Any = None,
    ):
        details: Dict[str, Any] = {}
        if resource_type:
            details["resource_type"] = resource_type
        if resource_id is not None:
            details["resource_id"] = resource_id
        super().__init__(message, f"{self.CODE_PREFIX}004", details)


# Integration exceptions
class IntegrationException(ReceetsException):
    """Base exception for integration-related errors."""

    CODE_PREFIX = "INTEGRATION_"


class PaymentGatewayException(IntegrationException):
    """Raised when the payment gateway fails to charge a payment."""

    kind = "payment_gateway"

    def __init__(
        self, message: str, sale_id: Any = None, original_error: Optional[str] = None
    ):
        details: Dict[str, Any] = {"service_name": "payment_gateway"}
        if sale_id is not None:
            details["sale_id"] = sale_id
        if original_error:
            details["original_error"] = original_error
        super().__init__(
            f"Payment gateway error: {message}", f"{self.CODE_PREFIX}001", details
        )


class RefundGatewayException(IntegrationException):
    """Raised when the payment gateway fails to issue a refund."""

    kind = "refund_gateway"

    def __init__(
        self, message: str, sale_id: Any = None, original_error: Optional[str] = None
    ):
        details: Dict[str, Any] = {"service_name": "payment_gateway"}
        if sale_id is not None:
            details["sale_id"] = sale_id
        if original_error:
            details["original_error"] = original_error
        super().__init__(
            f"Refund gateway error: {message}", f"{self.CODE_PREFIX}002", details
        )
