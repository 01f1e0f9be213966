"""Custom exceptions for the PathRec API.

Defines specific exception types for better error handling and reporting.
"""

from typing import Any, Dict, Optional


class PathRecException(Exception):
    """Base exception for PathRec errors."""

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


class ShopNotFoundError(PathRecException):
    """Raised when a shop id does not exist."""

    def __init__(self, shop_id: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Shop {shop_id} not found",
            status_code=404,
            details=details or {"shop_id": shop_id},
        )


class CollectionNotFoundError(PathRecException):
    """Raised when a collection does not exist or belongs to another shop."""

    def __init__(
        self, shop_id: int, collection_id: int, details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=f"Collection {collection_id} not found for shop {shop_id}",
            status_code=404,
            details=details or {"shop_id": shop_id, "collection_id": collection_id},
        )


class JobNotFoundError(PathRecException):
    """Raised when a job id does not exist."""

    def __init__(self, job_id: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Job {job_id} not found",
            status_code=404,
            details=details or {"job_id": job_id},
        )


class SettingsValidationError(PathRecException):
    """Raised when a settings update is out of range."""

    def __init__(self, error: Exception, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Invalid settings: {str(error)}",
            status_code=400,
            details=details or {"error": str(error)},
        )
