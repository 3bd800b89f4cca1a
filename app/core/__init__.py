"""
Core Application - Infrastructure & Base Classes

Generic, reusable base classes shared by the domain apps. No chat or
authentication logic lives here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Services (import from core.services):
    - BaseService: Logger, transaction and row-locking helpers

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Input/business rule failures (400)
    - NotFoundError: Resource not found (404)
    - PermissionDeniedError: Authorization failures (403)
    - ConflictError: State conflicts (409)

DRF integration:
    - core.exception_handler.exception_handler: REST_FRAMEWORK["EXCEPTION_HANDLER"]

Note:
    Django models are NOT imported here to avoid AppRegistryNotReady
    errors. Import them directly from their modules.
"""

from .services import BaseService

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

__all__ = [
    "BaseService",
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
]
