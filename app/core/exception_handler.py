"""
DRF exception handler for service-layer errors.

Registered as REST_FRAMEWORK["EXCEPTION_HANDLER"]. Service exceptions
(core.exceptions.BaseApplicationError) become JSON responses built from
to_dict() with the status code declared on the exception class. Everything
else falls through to DRF's default handler.
"""

from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def exception_handler(exc, context):
    """Render BaseApplicationError subclasses, defer the rest to DRF."""
    if isinstance(exc, BaseApplicationError):
        view = context.get("view")
        logger.info(
            f"{exc.__class__.__name__} in {view.__class__.__name__ if view else 'unknown view'}: {exc}"
        )
        return Response(exc.to_dict(), status=exc.status_code)

    return drf_exception_handler(exc, context)
