"""
Core Application - Infrastructure & Base Classes

This app contains the infrastructure shared by the domain apps:

- Generic, reusable base classes (no chat-specific logic)
- Clear extension points for domain apps
- Infrastructure concerns separated from business logic

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Input validation failures
    - NotFoundError: Resource not found
    - PermissionDeniedError: Authorization failures
    - ConflictError: State conflicts (broken invariants, duplicates)

Views (import from core.views):
    - health_check: Liveness/readiness endpoint

Usage:
    from core.models import BaseModel
    from core.services import BaseService, ServiceResult
    from core.exceptions import ConflictError

Note:
    Django models are NOT imported here to avoid AppRegistryNotReady
    errors. Import them directly from their modules.
"""

# Services (no Django model dependencies)
from .services import BaseService, ServiceResult

# Exceptions (no Django dependencies)
from .exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
]
