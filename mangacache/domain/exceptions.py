"""Domain exceptions for the manga cache service.

Defines caller-facing exceptions (invalid input, missing resources, auth).
These exceptions are independent of infrastructure concerns. Presentation
layer maps them to HTTP responses in exception handlers.
"""

from typing import Any


class MangaCacheException(Exception):
    """Base exception for all manga cache errors.

    All custom exceptions should inherit from this class to allow
    consistent error handling and logging. Presentation layer maps
    these to HTTP responses using message, error_code, and details.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code.
        details: Additional error context (e.g. field, resource_id).
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            error_code: Optional machine-readable code; defaults to class name.
            details: Optional dict of extra context.
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON body used by the exception handlers."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(MangaCacheException):
    """Raised when input validation fails (e.g. invalid format or range)."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize with message and optional field name.

        Args:
            message: Description of the validation failure.
            field: Optional field or attribute that failed validation.
        """
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", details)


class AuthenticationException(MangaCacheException):
    """Raised when authentication fails (e.g. invalid credentials or token)."""

    def __init__(self, message: str = "Authentication failed") -> None:
        super().__init__(message, "AUTHENTICATION_ERROR")


class AuthorizationException(MangaCacheException):
    """Raised when the caller lacks the role required for the operation."""

    def __init__(self, role: str | None = None, message: str = "Permission denied") -> None:
        """Initialize with optional required role and message.

        Args:
            role: Role the operation requires (e.g. 'admin').
            message: Human-readable message; default used when role omitted.
        """
        if role:
            message = f"Permission denied: requires role {role!r}"
        details: dict[str, Any] = {"role": role} if role else {}
        super().__init__(message, "AUTHORIZATION_ERROR", details)


class ResourceNotFoundException(MangaCacheException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        """Initialize with resource type and id.

        Args:
            resource_type: Type of resource (e.g. 'cache_key', 'image').
            resource_id: The ID that was not found.
        """
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            "RESOURCE_NOT_FOUND",
            {"resource_type": resource_type, "resource_id": resource_id},
        )


class ServiceNotConfiguredException(MangaCacheException):
    """Raised when an operation needs a collaborator that is not configured."""

    def __init__(self, service: str) -> None:
        super().__init__(
            message=f"This operation requires {service}, which is not configured.",
            error_code="SERVICE_UNAVAILABLE",
            details={"service": service},
        )
