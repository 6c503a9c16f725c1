from __future__ import annotations

import logging
from typing import Optional

from django.core.exceptions import PermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """
    Base class for every error the workflow engine raises on purpose.

    Each subclass carries a stable machine-readable ``code`` and the HTTP status
    the API layer answers with.
    """

    code = "ENGINE_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(EngineError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST


class RangeError(ValidationError):
    code = "SCORE_OUT_OF_RANGE"


class WindowClosedError(ValidationError):
    code = "WINDOW_CLOSED"


class ConflictError(EngineError):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(EngineError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class AuthorizationError(EngineError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class FrozenError(EngineError):
    code = "RECORD_FROZEN"
    status_code = status.HTTP_409_CONFLICT


_DRF_CODES = {
    exceptions.NotAuthenticated: "AUTH_REQUIRED",
    exceptions.AuthenticationFailed: "AUTH_FAILED",
    exceptions.PermissionDenied: "FORBIDDEN",
    exceptions.NotFound: "NOT_FOUND",
    exceptions.MethodNotAllowed: "METHOD_NOT_ALLOWED",
    exceptions.ParseError: "MALFORMED_REQUEST",
    exceptions.ValidationError: "VALIDATION_ERROR",
}


def _drf_message(detail) -> str:
    if isinstance(detail, dict):
        parts = []
        for field, errors in detail.items():
            if isinstance(errors, (list, tuple)):
                errors = "; ".join(str(e) for e in errors)
            parts.append(f"{field}: {errors}")
        return " | ".join(parts)
    if isinstance(detail, (list, tuple)):
        return "; ".join(str(e) for e in detail)
    return str(detail)


def api_exception_handler(exc, context):
    """
    DRF exception handler that renders every error in the
    ``{"success": false, "error": {"code", "message"}}`` envelope.
    """
    if isinstance(exc, EngineError):
        view = context.get("view")
        logger.info(
            "%s rejected by %s: %s",
            exc.code,
            view.__class__.__name__ if view is not None else "unknown view",
            exc.message,
        )
        return Response({"success": False, "error": exc.to_dict()}, status=exc.status_code)

    if isinstance(exc, Http404):
        exc = exceptions.NotFound(*exc.args)
    elif isinstance(exc, PermissionDenied):
        exc = exceptions.PermissionDenied(*exc.args)

    response = exception_handler(exc, context)
    if response is None:
        return None

    code = "ERROR"
    for exc_type, mapped in _DRF_CODES.items():
        if isinstance(exc, exc_type):
            code = mapped
            break
    detail = getattr(exc, "detail", response.data)
    response.data = {"success": False, "error": {"code": code, "message": _drf_message(detail)}}
    return response
