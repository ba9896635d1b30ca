"""
Core base model shared by the domain models.

Base Classes:
    BaseModel: Abstract model with timestamps (created_at, updated_at)

Usage:
    from core.models import BaseModel

    class Chat(BaseModel):
        name = models.CharField(max_length=100)

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    Abstract base model providing creation/modification timestamps.

    Fields:
        created_at: Set once when the row is inserted
        updated_at: Refreshed on every save()

    Note:
        Queryset .update() calls bypass auto_now; pass updated_at explicitly
        when a conditional UPDATE must bump it.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        """Default string representation using primary key."""
        return f"{self.__class__.__name__}(id={self.pk})"
