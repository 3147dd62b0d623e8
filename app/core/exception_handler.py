"""
DRF exception handler for application errors.

Registered in settings as REST_FRAMEWORK["EXCEPTION_HANDLER"]. Renders any
BaseApplicationError raised from a view or service with its own status code
and to_dict() body. Everything else is delegated to DRF's default handler.

Usage:
    REST_FRAMEWORK = {
        "EXCEPTION_HANDLER": "core.exception_handler.application_exception_handler",
    }
"""

from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def application_exception_handler(exc, context):
    if isinstance(exc, BaseApplicationError):
        view = context.get("view")
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            f"{exc.__class__.__name__} in {view.__class__.__name__ if view else 'view'}",
            extra={
                "error_code": exc.error_code,
                "status_code": exc.status_code,
            },
        )
        return Response(exc.to_dict(), status=exc.status_code)

    return exception_handler(exc, context)
