"""Custom exceptions for StoreRec.

Defines specific exception types for better error handling and reporting.
Every exception carries the HTTP status code the service surface answers with.
"""

from typing import Any, Dict, Optional


class StoreRecException(Exception):
    """Base exception for StoreRec errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize exception.

        Args:
            message: Human-readable error message
            status_code: HTTP status code for API responses
            details: Additional error details for debugging
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class InvalidInputError(StoreRecException):
    """Raised when an identifier or request parameter is malformed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, status_code=400, details=details)


class ProductNotFoundError(StoreRecException):
    """Raised when a required product does not exist in the catalog."""

    def __init__(self, product_id: str, details: Optional[Dict[str, Any]] = None):
        message = f"Product '{product_id}' not found in catalog"
        super().__init__(
            message=message,
            status_code=404,
            details=details or {"product_id": product_id},
        )


class ComputationFailedError(StoreRecException):
    """Raised when an event store or catalog read fails during scoring."""

    def __init__(self, subject: str, error: Exception):
        message = f"Failed to compute recommendations for '{subject}': {str(error)}"
        super().__init__(
            message=message,
            status_code=500,
            details={
                "subject": subject,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )


class CacheDegradedError(StoreRecException):
    """Raised by cache stores when a read or write fails.

    Absorbed at the cache boundary; callers never see it.
    """

    def __init__(self, operation: str, key: str, error: Optional[Exception] = None):
        message = f"Cache {operation} failed for key '{key}'"
        if error is not None:
            message = f"{message}: {str(error)}"
        super().__init__(
            message=message,
            status_code=503,
            details={"operation": operation, "key": key},
        )
