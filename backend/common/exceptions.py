"""
Custom exception classes and unified exception handler for the API.

This module provides:
- Business exceptions for the returns domain (InvalidTransitionError, PaymentGatewayError, etc.)
- Unified exception handler that formats all errors consistently
- Environment-aware error response formatting (hides sensitive info in production)
"""

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import JsonResponse
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# Custom Business Logic Exceptions
# ============================================================================

class BusinessException(APIException):
    """
    Base class for all business logic exceptions.

    Provides a consistent way to handle domain-specific errors with
    appropriate HTTP status codes and error messages. ``extra`` carries
    structured fields that the exception handler merges into the error body.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'A business logic error occurred.'
    default_code = 'business_error'
    error_code = 'BUSINESS_ERROR'

    def __init__(self, detail=None, code=None, error_code=None, extra=None):
        """
        Initialize the exception.

        Args:
            detail (str, optional): Error message. Uses default_detail if not provided.
            code (str, optional): Error code for DRF. Uses default_code if not provided.
            error_code (str, optional): Custom error code for client. Uses class error_code if not provided.
            extra (dict, optional): Additional fields rendered into the error body.
        """
        if detail is None:
            detail = self.default_detail
        if code is None:
            code = self.default_code
        if error_code is None:
            error_code = self.error_code

        super().__init__(detail=detail, code=code)
        self.error_code = error_code
        self.extra = dict(extra or {})


class ResourceNotFoundError(BusinessException):
    """
    Raised when a referenced record does not exist.

    HTTP Status: 404 Not Found
    """

    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found'
    default_code = 'not_found'
    error_code = 'NOT_FOUND'


class ReturnNotFoundError(ResourceNotFoundError):
    default_detail = 'Return request not found'
    default_code = 'return_not_found'
    error_code = 'RETURN_NOT_FOUND'


class OrderNotFoundError(ResourceNotFoundError):
    default_detail = 'Order not found'
    default_code = 'order_not_found'
    error_code = 'ORDER_NOT_FOUND'


class InvalidTransitionError(BusinessException):
    """
    Raised when a return status change is not an edge of the transition table,
    or when the record moved on before the change could be applied.

    HTTP Status: 409 Conflict

    Example:
        raise InvalidTransitionError(
            current_status='received',
            target_status='approved',
            valid_next_statuses=['inspected'],
        )
    """

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Invalid return status transition'
    default_code = 'invalid_transition'
    error_code = 'INVALID_TRANSITION'

    def __init__(self, current_status=None, target_status=None, valid_next_statuses=None, detail=None):
        self.current_status = current_status
        self.target_status = target_status
        self.valid_next_statuses = list(valid_next_statuses or [])
        if detail is None and current_status is not None:
            detail = f'Cannot transition from {current_status} to {target_status}'
        super().__init__(
            detail=detail,
            extra={
                'current_status': current_status,
                'valid_next_statuses': self.valid_next_statuses,
            },
        )


class TransitionNotAllowedError(BusinessException):
    """
    Raised when the actor may not perform the requested change,
    e.g. a customer cancelling a return that is already being picked up.

    HTTP Status: 403 Forbidden
    """

    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'This return can no longer be changed by you'
    default_code = 'transition_not_allowed'
    error_code = 'TRANSITION_NOT_ALLOWED'


class InvalidReturnStateError(BusinessException):
    """
    Raised when a pickup or settlement operation is invoked on a return
    whose status does not meet the operation's precondition.

    HTTP Status: 400 Bad Request
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Return is not in a valid state for this operation'
    default_code = 'invalid_return_state'
    error_code = 'INVALID_RETURN_STATE'


class CarrierUnavailableError(BusinessException):
    """
    Raised by the carrier client on network error, timeout, API error
    or a malformed response. Pickup scheduling absorbs it.

    HTTP Status: 502 Bad Gateway

    Example:
        try:
            response = requests.post(url, json=payload, timeout=10)
        except requests.RequestException as e:
            raise CarrierUnavailableError(detail=f'Carrier request failed: {e}')
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Reverse pickup carrier unavailable'
    default_code = 'carrier_unavailable'
    error_code = 'CARRIER_UNAVAILABLE'


class SettlementConflictError(BusinessException):
    """
    Raised inside the locked settlement step when the refund is already
    recorded. The settlement service turns it into a no-op success.

    HTTP Status: 409 Conflict
    """

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Refund already settled for this return'
    default_code = 'settlement_conflict'
    error_code = 'SETTLEMENT_CONFLICT'


class PersistenceFailureError(BusinessException):
    """
    Raised when the store fails while applying a change. The enclosing
    transaction is rolled back so no partial state remains.

    HTTP Status: 500 Internal Server Error
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Failed to persist return changes'
    default_code = 'persistence_failure'
    error_code = 'PERSISTENCE_FAILURE'


class ReturnNotEligibleError(BusinessException):
    """
    Raised when a return is requested for an order that fails eligibility.
    ``extra['reasons']`` lists every failed check.

    HTTP Status: 400 Bad Request
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Order is not eligible for return'
    default_code = 'return_not_eligible'
    error_code = 'RETURN_NOT_ELIGIBLE'


class DuplicateReturnError(BusinessException):
    """
    Raised when an active return already exists for the order.

    HTTP Status: 409 Conflict
    """

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'A return request already exists for this order'
    default_code = 'duplicate_return'
    error_code = 'DUPLICATE_RETURN'


class PaymentGatewayError(BusinessException):
    """
    Raised when the payment gateway rejects or fails a refund call.

    HTTP Status: 502 Bad Gateway
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Payment gateway refund failed'
    default_code = 'payment_gateway_error'
    error_code = 'PAYMENT_GATEWAY_ERROR'


# ============================================================================
# Unified Exception Handler
# ============================================================================

GENERIC_SERVER_MESSAGE = 'Internal server error, please try again later'


def _error_body(status_code, message, **fields):
    body = {'success': False, 'code': status_code, 'message': message}
    body.update({key: value for key, value in fields.items() if value is not None})
    return body


def _request_fields(request):
    return {
        'request_path': getattr(request, 'path', None),
        'request_method': getattr(request, 'method', None),
    }


def _unexpected_message(exc):
    from backend.settings.env_config import EnvironmentConfig

    if EnvironmentConfig.is_production():
        return GENERIC_SERVER_MESSAGE
    return f'{type(exc).__name__}: {exc}'


def custom_exception_handler(exc, context):
    """
    DRF ``EXCEPTION_HANDLER``: every error leaves the API as

        {"success": false, "code": <http status>, "message": "...",
         "error_code": "...", <exception extras>, "errors": {...}}

    ``errors`` (field validation detail) is omitted in production, as is the
    message of any 5xx response.
    """
    from backend.settings.env_config import EnvironmentConfig

    response = drf_exception_handler(exc, context)
    _log_exception(exc, context, response)

    if response is None:
        return _handle_unhandled_exception(exc, context)

    production = EnvironmentConfig.is_production()
    message, errors = _extract_error_info(response.data)
    if production and response.status_code >= 500:
        message = GENERIC_SERVER_MESSAGE

    body = _error_body(
        response.status_code,
        message,
        error_code=getattr(exc, 'error_code', None),
        errors=None if production else errors,
    )
    if isinstance(exc, BusinessException):
        body.update(exc.extra)

    response.data = body
    return response


def _extract_error_info(error_data):
    """
    Returns:
        tuple: (message, field errors or None)
    """
    if isinstance(error_data, dict):
        for key in ('detail', 'message'):
            if key in error_data:
                return str(error_data[key]), None
        return 'Validation error', error_data
    if isinstance(error_data, list):
        return (str(error_data[0]) if error_data else 'An error occurred'), None
    return str(error_data), None


def _handle_unhandled_exception(exc, context):
    """
    Exceptions DRF does not translate: Django validation errors become 400, the rest 500.

    Already logged by ``_log_exception``.
    """
    if isinstance(exc, DjangoValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
        message = '; '.join(exc.messages)
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        message = _unexpected_message(exc)
    return Response(_error_body(status_code, message), status=status_code)


def _log_exception(exc, context, response):
    """5xx and untranslated errors log with traceback, 4xx as warnings."""
    view = context.get('view')
    status_code = response.status_code if response is not None else None

    if status_code is None or status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO

    text = str(exc)
    logger.log(
        level,
        f'{type(exc).__name__}: {text}' if text else type(exc).__name__,
        exc_info=exc if level == logging.ERROR else None,
        extra={
            **_request_fields(context.get('request')),
            'view_name': type(view).__name__ if view else None,
            'object_id': getattr(view, 'kwargs', {}).get('pk') if view else None,
            'status_code': status_code,
            'error_code': getattr(exc, 'error_code', None),
        },
    )


class ExceptionLoggingMiddleware:
    """
    Last-resort handler for exceptions escaping non-DRF views (admin, docs).

    Registered at the end of ``MIDDLEWARE``.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        try:
            return self.get_response(request)
        except Exception as exc:
            logger.error(
                f'Unhandled exception in middleware: {type(exc).__name__}',
                exc_info=exc,
                extra=_request_fields(request),
            )
            status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
            return JsonResponse(_error_body(status_code, _unexpected_message(exc)), status=status_code)
