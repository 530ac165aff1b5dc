"""DRF exception handler producing the API error envelope.

Every error leaving the API has the shape::

    {"success": false, "message": "...", "errors": {...}}

``errors`` is only present for field-level validation failures.
Domain exceptions are translated by the views themselves; this handler
covers what DRF raises (authentication, permissions, parsing, throttling,
serializer validation).
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = structlog.get_logger(__name__)


def _first_message(detail: Any) -> str:
    if isinstance(detail, dict):
        for key, value in detail.items():
            message = _first_message(value)
            if key in ("detail", "non_field_errors"):
                return message
            return f"{key}: {message}"
        return "Invalid request."
    if isinstance(detail, list):
        return _first_message(detail[0]) if detail else "Invalid request."
    return str(detail)


def api_exception_handler(exc: Exception, context: dict) -> Optional[Response]:
    response = exception_handler(exc, context)
    if response is None:
        return None

    body: dict[str, Any] = {
        "success": False,
        "message": _first_message(response.data),
    }
    if isinstance(exc, ValidationError) and isinstance(response.data, (dict, list)):
        body["errors"] = response.data

    view = context.get("view")
    logger.warning(
        "api.request_rejected",
        status_code=response.status_code,
        view=view.__class__.__name__ if view else None,
        error=body["message"],
    )
    response.data = body
    return response
