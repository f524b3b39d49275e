"""
Custom exceptions and DRF exception handler for the Academy payments service.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from rest_framework.exceptions import APIException


def custom_exception_handler(exc, context):
    """
    Custom exception handler for DRF.
    Standardizes all API error responses into a consistent format.
    """
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        # response.data may be a dict, list, or string; we preserve it in 'details'
        if isinstance(response.data, dict) and 'detail' in response.data:
            message = response.data['detail']
        else:
            message = 'A server error occurred.' if response.status_code >= 500 else 'Invalid request.'

        custom_data = {
            'error': True,
            'code': response.status_code,
            'message': message,
            'reason': getattr(exc, 'reason', None),
            'details': response.data,
        }
        response.data = custom_data
    else:
        # Anything DRF does not know how to render becomes a generic 500
        try:
            exc_str = str(exc)
        except Exception:
            exc_str = None

        response = Response({
            'error': True,
            'code': status.HTTP_500_INTERNAL_SERVER_ERROR,
            'message': 'Internal server error',
            'reason': None,
            'details': exc_str
        }, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return response


class PaymentError(APIException):
    """
    Base class for payment processing errors.
    Carries a machine readable ``reason`` next to the human readable detail.
    """
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = 'Transaction could not be completed.'
    default_code = 'payment_failed'
    default_reason = 'payment_failed'

    def __init__(self, detail=None, reason=None, code=None):
        self.reason = reason or self.default_reason
        super().__init__(detail=detail, code=code or self.reason)


class ProviderUnavailable(PaymentError):
    """Network error, timeout or 5xx from a payment provider. Retryable by the caller."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Payment provider is temporarily unavailable.'
    default_code = 'provider_unavailable'
    default_reason = 'provider_unavailable'


class ProviderRejected(PaymentError):
    """Business rejection (4xx) from a payment provider. Not retryable."""
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_detail = 'Payment provider rejected the request.'
    default_code = 'provider_rejected'
    default_reason = 'provider_rejected'


class AuthExpired(PaymentError):
    """
    Provider bearer token was refused. Adapters recover from this once by
    refreshing the token; it only escapes when the refresh also fails.
    """
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Payment provider credentials expired.'
    default_code = 'auth_expired'
    default_reason = 'auth_expired'


class InvalidSignature(PaymentError):
    """Webhook signature did not match. Always terminal."""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Invalid webhook signature.'
    default_code = 'invalid_signature'
    default_reason = 'invalid_signature'


class CouponInvalid(PaymentError):
    """
    Coupon failed validation.
    ``reason`` is one of: not_found, inactive, expired, exhausted,
    below_minimum, scope_mismatch, already_used.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Coupon is invalid.'
    default_code = 'coupon_invalid'
    default_reason = 'coupon_invalid'

    MESSAGES = {
        'not_found': 'Coupon does not exist.',
        'inactive': 'Coupon is not active.',
        'expired': 'Coupon has expired.',
        'exhausted': 'Coupon usage limit reached.',
        'below_minimum': 'Purchase amount is below the coupon minimum.',
        'scope_mismatch': 'Coupon does not apply to this course.',
        'already_used': 'You have already used this coupon.',
    }

    def __init__(self, reason, detail=None):
        super().__init__(detail=detail or self.MESSAGES.get(reason, self.default_detail), reason=reason)


class CouponExhausted(PaymentError):
    """Lost the race for the last coupon use at confirmation time."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Coupon usage limit reached.'
    default_code = 'coupon_exhausted'
    default_reason = 'coupon_exhausted'


class InvalidStateTransition(PaymentError):
    """Illegal purchase state change (replay anomaly or programming error)."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Purchase cannot change to the requested state.'
    default_code = 'invalid_state_transition'
    default_reason = 'invalid_state_transition'

    def __init__(self, current=None, target=None, detail=None):
        self.current = current
        self.target = target
        if detail is None and current and target:
            detail = f"Cannot transition purchase from {current} to {target}."
        super().__init__(detail=detail)


class CheckoutNotAllowed(PaymentError):
    """Checkout refused before any provider call (enrollment, currency, disabled provider)."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Checkout is not allowed.'
    default_code = 'checkout_not_allowed'
    default_reason = 'checkout_not_allowed'
