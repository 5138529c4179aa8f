from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler


class DevTinderError(Exception):
    """
    Base for every error the connection and message stores raise.

    Subclasses pin an HTTP status and a default user-readable message so the
    request layer can render them without knowing each cause.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


def _error(message, status_code):
    return Response({"success": False, "message": message}, status=status_code)


def detail_message(detail, default=None) -> str:
    """Flatten DRF error detail into one line of text."""
    if isinstance(detail, dict):
        # serializer errors: surface the first field message
        field, errors = next(iter(detail.items()))
        first = errors[0] if isinstance(errors, list) and errors else errors
        return f"{field}: {first}"
    if isinstance(detail, list):
        return str(detail[0]) if detail else str(default)
    return str(detail)


def api_exception_handler(exc, context):
    if isinstance(exc, DevTinderError):
        return _error(exc.message, exc.status_code)

    response = exception_handler(exc, context)
    if response is None:
        return None

    if isinstance(exc, Http404):
        return _error("Not found", response.status_code)

    if isinstance(exc, APIException):
        return _error(detail_message(exc.detail, exc.default_detail), response.status_code)

    return response
