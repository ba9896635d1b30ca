"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities

Service Layer Philosophy:
    Services encapsulate business logic separate from views and consumers.
    Views and consumers handle transport concerns, models handle data,
    services handle rules.

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, authorization,
      not-found, governance rules)
    - Exceptions: Use for unexpected failures (database errors, broken
      invariants, bugs)

Usage:
    from core.services import BaseService, ServiceResult

    class GroupService(BaseService):
        @classmethod
        def mute_user(cls, actor, chat, user_id) -> ServiceResult[Chat]:
            if not chat.is_admin(actor):
                return ServiceResult.failure(
                    "Only admins can mute users",
                    error_code="NOT_ADMIN",
                )

            with cls.atomic():
                ...

            cls.get_logger().info(f"Muted user {user_id} in chat {chat.id}")
            return ServiceResult.success(chat)

    # In a view
    result = GroupService.mute_user(request.user, chat, user_id)
    if result.success:
        return Response(ChatSerializer(result.data).data)
    return self.service_error(result)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

# Generic type for ServiceResult data
T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.
    Use this for expected failures (validation errors, business rule violations).

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        # Success case
        return ServiceResult.success(chat)

        # Failure case
        return ServiceResult.failure("Chat not found", "CHAT_NOT_FOUND")

        # Check result
        result = GroupService.leave_group(user, chat)
        if not result:
            print(f"Error: {result.error} ({result.error_code})")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)

        Returns:
            ServiceResult with success=False and error details
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    def __bool__(self) -> bool:
        """Allow using result in boolean context (same as result.success)."""
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Services should be stateless
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
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

        Thin wrapper around Django's transaction.atomic() that makes
        transaction boundaries explicit in service code. Any exception
        raised inside the block rolls the whole block back.
        """
        with transaction.atomic():
            yield
