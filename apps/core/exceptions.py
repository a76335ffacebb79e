"""
Custom exception handler and exception hierarchy for DRF.

Every error leaves the API in the same envelope as successful responses:
{"success": false, "message": ..., "errors": {...}, "request_id": ...}
"""
import logging
from django.http import Http404
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django_ratelimit.exceptions import Ratelimited
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)

GENERIC_FORBIDDEN_MESSAGE = 'This action is unauthorized.'
GENERIC_SERVER_ERROR_MESSAGE = 'An unexpected error occurred. Please try again later.'
RATE_LIMIT_RETRY_AFTER = 60


class HMSException(Exception):
    """Base exception for hospital RBAC errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Request could not be processed.'

    def __init__(self, message=None, errors=None):
        self.message = message or self.default_message
        self.errors = errors or {}
        super().__init__(self.message)


class AuthenticationError(HMSException):
    """Raised when authentication fails."""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = 'Authentication credentials were not provided or are invalid.'


class PermissionDeniedError(HMSException):
    """Raised when the acting user lacks a required permission."""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = GENERIC_FORBIDDEN_MESSAGE


class ProtectedEntityError(PermissionDeniedError):
    """Raised when a well-formed request touches a protected role or user."""
    default_message = 'This role or user is protected and cannot be changed.'


class RoleDeletionDisabledError(PermissionDeniedError):
    """Raised for every role deletion request."""
    default_message = 'Role deletion is currently disabled.'


class ValidationError(HMSException):
    """Raised when input fails domain validation (unknown ids, dependency rules)."""
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = 'The given data was invalid.'


class OperationFailedError(HMSException):
    """Raised after a transactional mutation was rolled back by an unexpected error."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = GENERIC_SERVER_ERROR_MESSAGE


def _error_response(message, http_status, request_id=None, errors=None):
    body = {
        'success': False,
        'message': message,
    }
    if errors:
        body['errors'] = errors
    if request_id:
        body['request_id'] = request_id
    return Response(body, status=http_status)


def _normalize_errors(data):
    """Turn DRF error detail structures into {field: [messages]}."""
    if isinstance(data, dict):
        return {
            field: [str(item) for item in detail] if isinstance(detail, list) else [str(detail)]
            for field, detail in data.items()
        }
    if isinstance(data, list):
        return {'non_field_errors': [str(item) for item in data]}
    return {'non_field_errors': [str(data)]}


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns the envelope format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None
    log_extra = {
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
        'view': context['view'].__class__.__name__ if context.get('view') else None,
    }

    # django-ratelimit raises a PermissionDenied subclass, so it goes first
    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger

        ip_address = request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown'
        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=ip_address,
            limit='Rate limit exceeded'
        )
        response = _error_response(
            'Rate limit exceeded. Please try again later.',
            status.HTTP_429_TOO_MANY_REQUESTS,
            request_id=request_id,
        )
        response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
        return response

    if isinstance(exc, HMSException):
        if exc.status_code >= 500:
            logger.error(
                f"Operation failed: {exc.__class__.__name__}",
                extra=log_extra,
                exc_info=exc.__cause__ is not None
            )
        else:
            logger.info(
                f"Request rejected: {exc.__class__.__name__}: {exc.message}",
                extra=log_extra
            )
        return _error_response(exc.message, exc.status_code, request_id=request_id, errors=exc.errors)

    if isinstance(exc, drf_exceptions.ValidationError):
        return _error_response(
            ValidationError.default_message,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            request_id=request_id,
            errors=_normalize_errors(exc.detail),
        )

    if isinstance(exc, (drf_exceptions.PermissionDenied, DjangoPermissionDenied)):
        logger.info("Permission denied", extra=log_extra)
        return _error_response(GENERIC_FORBIDDEN_MESSAGE, status.HTTP_403_FORBIDDEN, request_id=request_id)

    if isinstance(exc, (Http404, drf_exceptions.NotFound)):
        return _error_response('Resource not found.', status.HTTP_404_NOT_FOUND, request_id=request_id)

    # Call DRF's default exception handler for the remaining API exceptions
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={**log_extra, 'exception': str(exc)},
            exc_info=True
        )
        return _error_response(
            GENERIC_SERVER_ERROR_MESSAGE,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )

    detail = getattr(exc, 'detail', None)
    message = str(detail) if isinstance(detail, str) else response.status_text
    error_response = _error_response(message, response.status_code, request_id=request_id)
    # Preserve WWW-Authenticate / Retry-After set by DRF
    for header in ('WWW-Authenticate', 'Retry-After'):
        if header in response:
            error_response[header] = response[header]
    return error_response
