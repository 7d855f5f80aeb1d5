import logging

from django.core.exceptions import ObjectDoesNotExist, ValidationError as DjangoValidationError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError
from rest_framework.views import exception_handler

from workshop.exceptions import UpstreamFailure, WorkshopError

from .responses import error

logger = logging.getLogger(__name__)


def _first_message(detail):
    if isinstance(detail, dict):
        for value in detail.values():
            return _first_message(value)
        return "Invalid input"
    if isinstance(detail, (list, tuple)):
        return _first_message(detail[0]) if detail else "Invalid input"
    return str(detail)


def envelope_exception_handler(exc, context):
    """Render every error as ``{"success": false, "message": ..., "errors": ...}``."""
    if isinstance(exc, WorkshopError):
        if isinstance(exc, UpstreamFailure):
            logger.warning("Upstream failure: %s", exc.message)
        return error(exc.message, exc.errors, status=exc.status_code)

    if isinstance(exc, DjangoValidationError):
        errors = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
        return error(_first_message(errors), errors, status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, ObjectDoesNotExist):
        return error("Resource not found", status=status.HTTP_404_NOT_FOUND)

    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, ValidationError):
        message, errors = _first_message(exc.detail), exc.detail
    elif isinstance(exc, Http404):
        message, errors = "Resource not found", None
    elif isinstance(exc, APIException):
        message, errors = _first_message(exc.detail), None
    else:
        message, errors = "Request failed", response.data
    response.data = {'success': False, 'message': message, 'errors': errors}
    return response
