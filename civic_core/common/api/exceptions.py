# civic_core/common/api/exceptions.py
from __future__ import annotations

import logging
import uuid
from typing import Any

from django.core.exceptions import ObjectDoesNotExist
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, NotAuthenticated, PermissionDenied, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


def ensure_request_id(request) -> str:
    """
    Ensures request has a stable request_id attribute and returns it.
    Safe to call from middleware and DRF exception handler.
    """
    rid = getattr(request, "request_id", None) if request is not None else None
    if not rid:
        rid = uuid.uuid4().hex
        if request is not None:
            setattr(request, "request_id", rid)
    return rid


def build_error_envelope(*, request=None, code: str, message: str, details: Any = None) -> dict[str, Any]:
    """
    Canonical error envelope, reusable from Django middleware (JsonResponse) and DRF (Response).
    """
    rid = ensure_request_id(request)
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": rid,
        }
    }


class ConflictError(APIException):
    """
    409 Conflict that still flows through the global exception handler.
    Use when business rules block an action.
    """
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict."
    default_code = "conflict"

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail or self.default_detail, code=code or self.default_code)


class InvalidTransition(ConflictError):
    """Operation invoked outside its legal source state."""
    default_detail = "Invalid status transition."
    default_code = "invalid_transition"


class DocumentLocked(ConflictError):
    """Mutation attempted on a document that is no longer editable (or already derived)."""
    default_detail = "Document is locked."
    default_code = "document_locked"


class DuplicateReminder(ConflictError):
    """
    A reminder already exists for (tenant, window, level).
    Raised inside the scheduler and swallowed there; never reaches a client.
    """
    default_detail = "Reminder already scheduled."
    default_code = "duplicate_reminder"


class EntityNotFound(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."
    default_code = "not_found"


class DeliveryFailure(APIException):
    """Email/PDF collaborator could not deliver (staff-facing sends only)."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Delivery failed."
    default_code = "delivery_failure"


_CODES_BY_CLASS = (
    (ValidationError, "validation_error"),
    (NotAuthenticated, "not_authenticated"),
    (PermissionDenied, "permission_denied"),
    (Http404, "not_found"),
)


def _code_for(exc: Exception) -> str:
    for klass, code in _CODES_BY_CLASS:
        if isinstance(exc, klass):
            return code
    return getattr(exc, "default_code", None) or "api_error"


def _split_detail(data: Any) -> tuple[str, Any]:
    """
    {"detail": "x"}            -> ("x", None)
    {"detail": "x", "k": ...}  -> ("x", {"k": ...})
    anything else              -> ("Request failed.", data)
    """
    if isinstance(data, dict) and "detail" in data:
        rest = {k: v for k, v in data.items() if k != "detail"}
        return str(data["detail"]), rest or None
    return "Request failed.", data


def _translate(exc: Exception) -> Exception:
    if isinstance(exc, ObjectDoesNotExist):
        return EntityNotFound(detail=str(exc) or EntityNotFound.default_detail)
    if isinstance(exc, DjangoValidationError):
        return ValidationError(detail=exc.message_dict if hasattr(exc, "error_dict") else exc.messages)
    return exc


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    """Every API error leaves as {"error": {code, message, details, request_id}}."""
    request = context.get("request")
    exc = _translate(exc)

    response = drf_exception_handler(exc, context)
    if response is None:
        logger.exception("Unhandled API error", exc_info=exc)
        body = build_error_envelope(request=request, code="server_error", message="Unexpected server error.")
        return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if response.status_code >= 500:
        logger.error("API error %s: %s", response.status_code, exc)

    message, details = _split_detail(response.data)
    body = build_error_envelope(request=request, code=_code_for(exc), message=message, details=details)
    return Response(body, status=response.status_code, headers=response.headers)
