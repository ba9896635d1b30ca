"""
ViewSet mixins for common DRF functionality.

This module provides generic, non-domain-specific mixins for viewsets:
- ServiceResponseMixin: Turn ServiceResult failures and invalid input into
  uniform {"error", "error_code"} responses

Usage:
    from core.viewset_mixins import ServiceResponseMixin

    class ArticleViewSet(ServiceResponseMixin, viewsets.ViewSet):
        error_status_map = {"ARTICLE_NOT_FOUND": 404}

        def create(self, request):
            data = self.validate_input(ArticleInputSerializer, request.data)
            result = ArticleService.create(request.user, **data)
            if not result.success:
                return self.service_error(result)
            return Response(ArticleSerializer(result.data).data, status=201)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response

if TYPE_CHECKING:
    from typing import Any

    from core.services import ServiceResult

logger = logging.getLogger(__name__)


class InvalidInput(APIException):
    """
    400 with the same body shape as a service failure.

    DRF's exception handler returns a dict detail unchanged, so the
    response body is exactly the dict built here.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "VALIDATION_ERROR"

    def __init__(self, errors: Any, message: str = "Invalid request data"):
        self.detail = {
            "error": message,
            "error_code": self.default_code,
            "errors": errors,
        }


class ServiceResponseMixin:
    """
    Map service results to responses.

    Attributes:
        error_status_map: error_code -> HTTP status. Codes missing from the
            map are reported as 400.
    """

    error_status_map: dict[str, int] = {}

    def validate_input(self, serializer_class, data) -> dict:
        """Validate request data, raising InvalidInput on failure."""
        serializer = serializer_class(data=data)
        if not serializer.is_valid():
            raise InvalidInput(serializer.errors)
        return serializer.validated_data

    def service_error(self, result: ServiceResult) -> Response:
        status_code = self.error_status_map.get(result.error_code, status.HTTP_400_BAD_REQUEST)
        if status_code >= 500:
            logger.error(f"Service failure {result.error_code}: {result.error}")
        return Response(
            {"error": result.error, "error_code": result.error_code},
            status=status_code,
        )
