"""
MRP Engine - Custom Exception Hierarchy

Provides structured, typed exceptions with error codes for consistent
error handling across the application.

Usage:
    from app.exceptions import NotFoundError, ValidationError

    # In a service
    raise NotFoundError("MRP run", run_id)

    # With custom message
    raise ValidationError("Planning horizon start must be before end", field="planning_horizon_start")
"""
from typing import Any, Dict, Optional


class MRPException(Exception):
    """
    Base exception for all MRP engine errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "NOT_FOUND", "VALIDATION_ERROR")
        status_code: HTTP status code to return
        details: Additional context for debugging
    """

    error_code: str = "MRP_ERROR"
    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ===================
# 400 Bad Request Errors
# ===================


class ValidationError(MRPException):
    """Raised when input validation fails."""

    error_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        field: Optional[str] = None,
        value: Any = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details=details)


class InvalidStateError(MRPException):
    """Raised when an operation is invalid for the current state."""

    error_code = "INVALID_STATE"
    status_code = 400

    def __init__(
        self,
        message: str = "Operation not allowed in current state",
        *,
        current_state: Optional[str] = None,
        allowed_states: Optional[list] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if current_state:
            details["current_state"] = current_state
        if allowed_states:
            details["allowed_states"] = allowed_states
        super().__init__(message, details=details)


# ===================
# 404 Not Found Errors
# ===================


class NotFoundError(MRPException):
    """Raised when a resource is not found."""

    error_code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Any = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["resource"] = resource
        if resource_id is not None:
            details["resource_id"] = str(resource_id)
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(message, details=details)


# ===================
# 409 Conflict Errors
# ===================


class ConflictError(MRPException):
    """Raised when there's a resource conflict."""

    error_code = "CONFLICT"
    status_code = 409

    def __init__(
        self,
        message: str = "Resource conflict",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class ConcurrencyError(ConflictError):
    """Raised when concurrent modification is detected."""

    error_code = "CONCURRENCY_ERROR"

    def __init__(
        self,
        message: str = "Resource was modified by another user",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class MRPLockError(ConcurrencyError):
    """Raised when the per-company MRP lock is held by another run."""

    error_code = "MRP_RUN_IN_PROGRESS"

    def __init__(
        self,
        company_id: int,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["company_id"] = company_id
        super().__init__(
            "Another MRP run is already in progress for this company.",
            details=details,
        )


# ===================
# 422 Unprocessable Entity Errors
# ===================


class BusinessRuleError(MRPException):
    """Raised when a business rule is violated."""

    error_code = "BUSINESS_RULE_ERROR"
    status_code = 422

    def __init__(
        self,
        message: str = "Business rule violation",
        *,
        rule: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if rule:
            details["rule"] = rule
        super().__init__(message, details=details)


class CircularReferenceError(BusinessRuleError):
    """Raised when a BOM resolves back onto itself."""

    error_code = "BOM_CIRCULAR_REFERENCE"

    def __init__(
        self,
        bom_number: Optional[str] = None,
        *,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        if bom_number:
            details["bom_number"] = bom_number
        if message is None:
            message = (
                f"Circular reference detected in BOM: {bom_number}"
                if bom_number else "Circular reference detected in BOM structure."
            )
        super().__init__(message, rule="bom_acyclic", details=details)


class MaxDepthExceededError(BusinessRuleError):
    """Raised when BOM explosion recurses past the configured depth."""

    error_code = "BOM_MAX_DEPTH_EXCEEDED"

    def __init__(
        self,
        max_depth: int,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["max_depth"] = max_depth
        super().__init__(
            f"BOM explosion exceeded maximum level ({max_depth}). Possible circular reference.",
            rule="bom_max_depth",
            details=details,
        )


class MissingBOMError(BusinessRuleError):
    """Raised when a make item has no default active BOM."""

    error_code = "MISSING_BOM"

    def __init__(
        self,
        product_sku: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["product_sku"] = product_sku
        super().__init__(
            f"No active BOM found for product: {product_sku}. Please create a BOM for this product.",
            rule="work_order_requires_bom",
            details=details,
        )


class MissingWarehouseError(BusinessRuleError):
    """Raised when no active warehouse exists to receive an order."""

    error_code = "MISSING_WAREHOUSE"

    def __init__(
        self,
        message: str = "No warehouse found. Please create a warehouse first.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, rule="warehouse_required", details=details)


# ===================
# 503 Service Unavailable Errors
# ===================


class ServiceUnavailableError(MRPException):
    """Raised when a service is temporarily unavailable."""

    error_code = "SERVICE_UNAVAILABLE"
    status_code = 503

    def __init__(
        self,
        service: str = "Service",
        message: str = "temporarily unavailable",
        *,
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = details or {}
        details["service"] = service
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(f"{service} {message}", details=details)
