"""
Base service layer patterns for business logic encapsulation.

Services encapsulate business logic separate from views and models.
Views handle HTTP concerns, models handle data, services handle logic.

Error Handling:
    Services raise core.exceptions subclasses for expected failures
    (NotFoundError, PermissionDeniedError, ValidationError, ConflictError).
    Raising inside cls.atomic() rolls back every write made in the block,
    including side effects queued with transaction.on_commit().

Usage:
    from core.exceptions import NotFoundError
    from core.services import BaseService

    class ConversationService(BaseService):
        @classmethod
        def hide(cls, conversation_id: int, user: User) -> Membership:
            with cls.atomic():
                membership = cls.lock(
                    Membership.objects.filter(conversation_id=conversation_id, user=user),
                    NotFoundError("Conversation not found"),
                )
                ...
            cls.get_logger().info(f"User {user.id} hid conversation {conversation_id}")
            return membership

Related:
    - core.exceptions: Error taxonomy raised by services
    - core.exception_handler: Maps the taxonomy onto HTTP responses
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

    from django.db.models import Model, QuerySet

    from core.exceptions import BaseApplicationError


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management
    - Row locking with a not-found error

    Design Notes:
        - Use @classmethod (no instance state)
        - Services should be stateless
        - Raise core.exceptions for expected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation fails, all
        changes are rolled back and on_commit callbacks are discarded.

        Example:
            with cls.atomic():
                membership.save()
                Message.objects.create(...)
                # If the message insert fails, the membership change is rolled back
        """
        with transaction.atomic():
            yield

    @classmethod
    def lock(cls, queryset: QuerySet, not_found: BaseApplicationError) -> Model:
        """
        Fetch a single row with SELECT ... FOR UPDATE.

        Must be called inside cls.atomic(). Raises the given error when
        the row does not exist.

        Args:
            queryset: Queryset narrowing to at most one row
            not_found: Exception raised when the queryset is empty

        Returns:
            The locked model instance
        """
        instance = queryset.select_for_update().first()
        if instance is None:
            raise not_found
        return instance
