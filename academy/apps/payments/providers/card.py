# FILE: /academy/apps/payments/providers/card.py
"""
Card payments through Stripe Checkout.

One synchronous call creates a hosted session; the outcome is pushed back
through ``checkout.session.*`` webhooks. The purchase id doubles as the
Stripe idempotency key, so a retried create returns the same session.
"""
import logging
import uuid

import stripe

from academy.core.exceptions import ProviderRejected, ProviderUnavailable
from ..models import Provider
from ..signatures import verify_stripe_signature
from .base import (
    CheckoutSession,
    Confirmation,
    ConfirmationStatus,
    EventKind,
    PaymentEvent,
    ProviderAdapter,
    RefundResult,
    WebhookPayloadError,
    metadata_from_dict,
)

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = {'checkout.session.completed', 'checkout.session.async_payment_succeeded'}
FAILURE_EVENTS = {'checkout.session.async_payment_failed', 'checkout.session.expired'}
REFUND_EVENTS = {'charge.refunded'}


def _get(obj, key, default=None):
    """Read a field from a StripeObject or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


class CardAdapter(ProviderAdapter):
    provider = Provider.CARD
    label = "Credit Card"
    supported_currencies = ('EGP', 'USD', 'EUR', 'GBP', 'SAR', 'AED')
    settings_name = 'STRIPE'
    required_credentials = ('SECRET_KEY', 'WEBHOOK_SECRET')

    _http_client_timeout = None

    def __init__(self, config=None):
        super().__init__(config)
        self._configure_http_client()

    def _configure_http_client(self):
        # The SDK client is process-wide; only rebuild it when the timeout changes.
        if CardAdapter._http_client_timeout != self.timeout:
            stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
            stripe.max_network_retries = 0
            CardAdapter._http_client_timeout = self.timeout

    @property
    def api_key(self):
        return self.config.get('SECRET_KEY')

    def _call(self, func, *args, **kwargs):
        """Invoke an SDK method and translate Stripe errors into ours."""
        try:
            return func(*args, api_key=self.api_key, **kwargs)
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            logger.warning(f"Stripe unreachable: {exc.__class__.__name__}")
            raise ProviderUnavailable(detail="Card processor is unreachable.") from exc
        except stripe.StripeError as exc:
            status_code = getattr(exc, 'http_status', None) or 0
            if status_code >= 500 or isinstance(exc, stripe.APIError):
                logger.warning(f"Stripe error {status_code}")
                raise ProviderUnavailable(detail="Card processor returned an error.") from exc
            logger.info(f"Stripe rejected request ({status_code}): {getattr(exc, 'user_message', '') or exc.code}")
            raise ProviderRejected(detail=getattr(exc, 'user_message', None) or "Card processor rejected the request.") from exc

    # ------------------------------------------------------------------

    def create_checkout(self, request):
        metadata = request.metadata.to_dict()
        separator = '&' if '?' in request.success_url else '?'
        session = self._call(
            stripe.checkout.Session.create,
            idempotency_key=str(request.purchase_id),
            mode='payment',
            line_items=[{
                'price_data': {
                    'currency': request.currency.lower(),
                    'unit_amount': request.amount,
                    'product_data': {'name': request.description[:250]},
                },
                'quantity': 1,
            }],
            customer_email=request.buyer_email or None,
            client_reference_id=str(request.purchase_id),
            metadata=metadata,
            payment_intent_data={'metadata': metadata},
            success_url=f"{request.success_url}{separator}session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=request.cancel_url,
        )
        if not _get(session, 'url'):
            raise ProviderRejected(detail="Card processor did not return a checkout URL.")
        return CheckoutSession(redirect_url=session.url, session_ref=session.id)

    def retrieve_confirmation(self, ref):
        session = self._call(stripe.checkout.Session.retrieve, ref)
        return self._confirmation_from_session(session)

    def _confirmation_from_session(self, session):
        payment_status = _get(session, 'payment_status') or ''
        if payment_status == 'paid':
            status = ConfirmationStatus.SUCCEEDED
        elif _get(session, 'status') == 'expired':
            status = ConfirmationStatus.FAILED
        else:
            status = ConfirmationStatus.PENDING
        currency = _get(session, 'currency')
        return Confirmation(
            status=status,
            paid_amount=_get(session, 'amount_total'),
            currency=currency.upper() if currency else None,
            provider_transaction_id=_get(session, 'payment_intent'),
            session_ref=_get(session, 'id'),
            payer_email=_get(_get(session, 'customer_details'), 'email'),
            metadata=metadata_from_dict(dict(_get(session, 'metadata') or {})),
            raw_status=payment_status or (_get(session, 'status') or ''),
        )

    def create_refund(self, provider_transaction_id, amount=None, currency=None):
        params = {'payment_intent': provider_transaction_id}
        if amount is not None:
            params['amount'] = amount
        refund = self._call(stripe.Refund.create, **params)
        if _get(refund, 'status') in ('failed', 'canceled'):
            raise ProviderRejected(detail="Card processor declined the refund.")
        return RefundResult(refund_id=refund.id, status=_get(refund, 'status') or '')

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, headers, body, query=None):
        return verify_stripe_signature(
            body,
            headers.get('stripe-signature', ''),
            self.config.get('WEBHOOK_SECRET'),
            tolerance=self.config.get('WEBHOOK_TOLERANCE', 300),
        )

    def parse_webhook(self, payload, query=None):
        event_type = payload.get('type') or ''
        event_id = payload.get('id')
        obj = (payload.get('data') or {}).get('object') or {}

        if event_type in REFUND_EVENTS:
            refunds = (obj.get('refunds') or {}).get('data') or []
            if not obj.get('payment_intent'):
                raise WebhookPayloadError("charge.refunded without payment_intent")
            return PaymentEvent(
                provider=self.provider,
                kind=EventKind.REFUNDED,
                event_type=event_type,
                event_id=event_id,
                provider_transaction_id=obj['payment_intent'],
                amount=obj.get('amount_refunded'),
                currency=obj.get('currency'),
                refund_id=refunds[0].get('id', '') if refunds else '',
                raw_status='refunded',
            )

        if event_type not in SUCCESS_EVENTS | FAILURE_EVENTS:
            return PaymentEvent(provider=self.provider, kind=EventKind.IGNORED, event_type=event_type, event_id=event_id)

        confirmation = self._confirmation_from_session(obj)
        if event_type in FAILURE_EVENTS:
            kind = EventKind.FAILED
        elif confirmation.status == ConfirmationStatus.SUCCEEDED:
            kind = EventKind.SUCCEEDED
        else:
            # Delayed payment methods complete later via async_payment_succeeded
            kind = EventKind.IGNORED

        if kind == EventKind.SUCCEEDED and not confirmation.provider_transaction_id:
            raise WebhookPayloadError("Completed session without payment_intent")

        client_reference = obj.get('client_reference_id')
        return PaymentEvent(
            provider=self.provider,
            kind=kind,
            event_type=event_type,
            event_id=event_id,
            purchase_id=self._parse_uuid(client_reference),
            session_ref=confirmation.session_ref,
            provider_transaction_id=confirmation.provider_transaction_id,
            amount=confirmation.paid_amount,
            currency=confirmation.currency,
            payer_email=confirmation.payer_email,
            metadata=confirmation.metadata,
            raw_status=confirmation.raw_status or event_type,
            reason=event_type.rsplit('.', 1)[-1] if kind == EventKind.FAILED else '',
        )

    @staticmethod
    def _parse_uuid(value):
        try:
            return uuid.UUID(str(value)) if value else None
        except ValueError:
            return None
