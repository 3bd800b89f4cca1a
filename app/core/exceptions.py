"""
Base exception classes for application-wide error handling.

Services raise these for expected, recoverable failures. The DRF exception
handler in core.exception_handler turns them into JSON responses with a
status code chosen per class.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed input or a rule the request breaks
    ├── NotFoundError - Conversation, message, member or user absent
    ├── PermissionDeniedError - Authenticated but not allowed
    └── ConflictError - Duplicate or conflicting state

Usage:
    from core.exceptions import NotFoundError, ValidationError

    raise ValidationError("Cannot pin more than 5 conversations", error_code="PIN_LIMIT_REACHED")

    raise NotFoundError(
        "Message not found in this conversation",
        error_code="MESSAGE_NOT_FOUND",
        details={"message_id": message_id},
    )

Note:
    DRF still handles API-layer exceptions (serializer validation,
    authentication). These classes are for the service layer.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, limits, etc.)
        status_code: HTTP status used when the error reaches a view
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Conversation not found",
                "error_code": "CONVERSATION_NOT_FOUND",
                "details": {"conversation_id": 12}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input or a business rule is violated.

    Use for:
    - Self-referential operations (chatting with yourself, transferring to yourself)
    - Exceeded limits (pinned conversations, group size)
    - Elapsed time windows (recall, batch delete)
    - Operations on a disbanded group that are malformed rather than forbidden
    """

    default_error_code: str = "VALIDATION_ERROR"
    status_code: int = 400


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Use for single-resource lookups where existence is expected. List
    queries return empty results instead.
    """

    default_error_code: str = "NOT_FOUND"
    status_code: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    Use for:
    - Not a member (or no longer an active member) of the conversation
    - Role insufficient for the group policy
    - Acting on someone else's message
    - Writing to a disbanded group

    Note:
        Authentication failures (missing/invalid token) stay with DRF's
        NotAuthenticated/AuthenticationFailed.
    """

    default_error_code: str = "PERMISSION_DENIED"
    status_code: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current state.

    Use for duplicate relationships (e.g. a friendship that already exists).
    HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"
    status_code: int = 409
