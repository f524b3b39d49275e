# FILE: /academy/apps/payments/providers/regional.py
"""
Paymob Accept (Egypt).

Checkout is three calls: an auth token, an order carrying our compact
metadata reference as ``merchant_order_id``, and a payment key bound to that
order which parametrises the hosted iframe. Paymob rejects payment-key
requests with missing billing fields, so unknown ones are sent as ``"NA"``.
"""
import json
import logging
from urllib.parse import urlencode

from academy.core.exceptions import ProviderRejected
from ..models import Provider
from ..signatures import verify_paymob_hmac
from .base import (
    CheckoutSession,
    Confirmation,
    ConfirmationStatus,
    EventKind,
    PaymentEvent,
    ProviderAdapter,
    RefundResult,
    TokenAuthMixin,
    TokenCache,
    WebhookPayloadError,
    metadata_from_reference,
    split_name,
)

logger = logging.getLogger(__name__)

BILLING_PLACEHOLDER = "NA"
BILLING_FIELDS = (
    'apartment', 'building', 'city', 'floor', 'postal_code',
    'shipping_method', 'state', 'street',
)
PAYMENT_KEY_EXPIRATION = 3600  # seconds


def build_billing_data(email, name, phone=None, country="EG", **known):
    """Full billing block; every field Paymob requires is present."""
    first_name, last_name = split_name(name, BILLING_PLACEHOLDER)
    billing = {field: known.get(field) or BILLING_PLACEHOLDER for field in BILLING_FIELDS}
    billing.update({
        'email': email or BILLING_PLACEHOLDER,
        'first_name': first_name,
        'last_name': last_name,
        'phone_number': phone or BILLING_PLACEHOLDER,
        'country': country or BILLING_PLACEHOLDER,
    })
    return billing


class RegionalAdapter(TokenAuthMixin, ProviderAdapter):
    provider = Provider.REGIONAL
    label = "Paymob (Egypt)"
    supported_currencies = ('EGP',)
    settings_name = 'PAYMOB'
    refund_requires_amount = True
    required_credentials = ('API_KEY', 'INTEGRATION_ID', 'IFRAME_ID', 'HMAC_SECRET')

    token_cache = TokenCache()

    def _fetch_token(self):
        data = self._request('POST', 'auth/tokens', json={'api_key': self.config.get('API_KEY')})
        token = data.get('token')
        if not token:
            raise ProviderRejected(detail="Paymob did not issue an auth token.")
        return token, self.config.get('TOKEN_TTL', 3000)

    # ------------------------------------------------------------------

    def create_checkout(self, request):
        merchant_order_id = request.metadata.to_reference()

        def register_order(token):
            return self._request('POST', 'ecommerce/orders', json={
                'auth_token': token,
                'delivery_needed': False,
                'amount_cents': request.amount,
                'currency': request.currency,
                'merchant_order_id': merchant_order_id,
                'items': [{
                    'name': request.description[:100],
                    'amount_cents': request.amount,
                    'description': request.description[:255],
                    'quantity': 1,
                }],
            })

        order = self._with_token(register_order)
        order_id = order.get('id')
        if not order_id:
            raise ProviderRejected(detail="Paymob did not return an order id.")

        def request_payment_key(token):
            return self._request('POST', 'acceptance/payment_keys', json={
                'auth_token': token,
                'amount_cents': request.amount,
                'expiration': PAYMENT_KEY_EXPIRATION,
                'order_id': order_id,
                'currency': request.currency,
                'integration_id': int(self.config.get('INTEGRATION_ID')),
                'billing_data': build_billing_data(request.buyer_email, request.buyer_name, request.buyer_phone),
                'lock_order_when_paid': True,
                'extras': request.metadata.to_dict(),
            })

        payment_key = self._with_token(request_payment_key).get('token')
        if not payment_key:
            raise ProviderRejected(detail="Paymob did not return a payment key.")

        return CheckoutSession(
            redirect_url=self.iframe_url(payment_key),
            session_ref=str(order_id),
            raw={'order_id': order_id},
        )

    def iframe_url(self, payment_key):
        query = urlencode({'payment_token': payment_key})
        return f"{self._url('acceptance/iframes')}/{self.config.get('IFRAME_ID')}?{query}"

    def retrieve_confirmation(self, ref):
        transaction = self._with_token(lambda token: self._request(
            'GET',
            f'acceptance/transactions/{ref}',
            headers={'Authorization': f'Bearer {token}'},
            retry=True,
        ))
        return self._confirmation_from_transaction(transaction)

    @staticmethod
    def _transaction_status(obj):
        if obj.get('is_refunded') or obj.get('is_voided'):
            return ConfirmationStatus.REFUNDED
        if obj.get('pending'):
            return ConfirmationStatus.PENDING
        if obj.get('success') and not obj.get('error_occured'):
            return ConfirmationStatus.SUCCEEDED
        return ConfirmationStatus.FAILED

    def _confirmation_from_transaction(self, obj):
        order = obj.get('order') or {}
        status = self._transaction_status(obj)
        return Confirmation(
            status=status,
            paid_amount=obj.get('amount_cents'),
            currency=obj.get('currency'),
            provider_transaction_id=str(obj['id']) if obj.get('id') is not None else None,
            session_ref=str(order['id']) if order.get('id') is not None else None,
            payer_email=(order.get('shipping_data') or {}).get('email'),
            metadata=metadata_from_reference(order.get('merchant_order_id')),
            raw_status=status.lower(),
        )

    def create_refund(self, provider_transaction_id, amount=None, currency=None):
        if amount is None:
            raise ProviderRejected(detail="Paymob refunds need an explicit amount.", reason="amount_required")

        result = self._with_token(lambda token: self._request('POST', 'acceptance/void_refund/refund', json={
            'auth_token': token,
            'transaction_id': provider_transaction_id,
            'amount_cents': amount,
        }))
        if not result.get('success'):
            message = (result.get('data') or {}).get('message') or "Paymob declined the refund."
            raise ProviderRejected(detail=message)
        return RefundResult(refund_id=str(result.get('id', '')), status='succeeded')

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, headers, body, query=None):
        """Paymob sends the HMAC as the ``hmac`` query parameter."""
        received = (query or {}).get('hmac', '')
        try:
            payload = json.loads(body)
        except ValueError:
            return False
        if not isinstance(payload, dict):
            return False
        return verify_paymob_hmac(payload.get('obj'), received, self.config.get('HMAC_SECRET'))

    def parse_webhook(self, payload, query=None):
        event_type = payload.get('type') or ''
        obj = payload.get('obj') or {}
        if event_type != 'TRANSACTION':
            return PaymentEvent(provider=self.provider, kind=EventKind.IGNORED, event_type=event_type)
        if obj.get('id') is None:
            raise WebhookPayloadError("Transaction callback without id")

        order = obj.get('order') or {}
        metadata = metadata_from_reference(order.get('merchant_order_id'))
        base = dict(
            provider=self.provider,
            event_type=event_type,
            event_id=str(obj['id']),
            session_ref=str(order['id']) if order.get('id') is not None else None,
            amount=obj.get('amount_cents'),
            currency=obj.get('currency'),
            payer_email=(order.get('shipping_data') or {}).get('email'),
            metadata=metadata,
        )

        # Refunds and voids arrive as child transactions of the original payment
        if obj.get('has_parent_transaction') and (obj.get('is_refund') or obj.get('is_void')):
            parent = obj.get('parent_transaction')
            if parent is None:
                raise WebhookPayloadError("Refund callback without parent transaction")
            return PaymentEvent(
                kind=EventKind.REFUNDED,
                provider_transaction_id=str(parent),
                refund_id=str(obj['id']),
                raw_status='refunded',
                **base,
            )

        status = self._transaction_status(obj)
        if status == ConfirmationStatus.PENDING:
            return PaymentEvent(kind=EventKind.IGNORED, raw_status='pending', **base)
        if status == ConfirmationStatus.REFUNDED:
            return PaymentEvent(
                kind=EventKind.REFUNDED,
                provider_transaction_id=str(obj['id']),
                raw_status='refunded',
                **base,
            )
        if status == ConfirmationStatus.SUCCEEDED:
            return PaymentEvent(
                kind=EventKind.SUCCEEDED,
                provider_transaction_id=str(obj['id']),
                raw_status='success',
                **base,
            )
        message = ((obj.get('data') or {}).get('message') or 'declined')
        return PaymentEvent(
            kind=EventKind.FAILED,
            provider_transaction_id=str(obj['id']),
            raw_status='failed',
            reason=str(message)[:255],
            **base,
        )
