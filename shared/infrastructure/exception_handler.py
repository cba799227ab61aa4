"""DRF exception handler that renders domain errors."""

from __future__ import annotations

import structlog
from rest_framework.response import Response  # type: ignore
from rest_framework.views import exception_handler as drf_exception_handler  # type: ignore

from shared.domain.exceptions import DomainError, TransientError

logger = structlog.get_logger(__name__)


def domain_exception_handler(exc, context):  # type: ignore
    """Map DomainError subclasses onto HTTP responses, defer the rest to DRF."""

    if not isinstance(exc, DomainError):
        return drf_exception_handler(exc, context)

    view = context.get("view")
    logger.info(
        "api.domain_error",
        error=exc.code,
        status=exc.http_status,
        view=view.__class__.__name__ if view else None,
    )
    response = Response(exc.to_dict(), status=exc.http_status)
    if isinstance(exc, TransientError):
        response["Retry-After"] = "1"
    return response
