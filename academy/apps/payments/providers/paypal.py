# FILE: /academy/apps/payments/providers/paypal.py
"""
PayPal Orders v2.

Two-phase: the order is created with ``intent=CAPTURE`` and returns an
approval link; once the buyer approves, the merchant captures it. Metadata
rides in ``purchase_units[0].custom_id`` as a compact reference string.
"""
import json
import logging

from academy.core.exceptions import ProviderRejected
from ..models import Provider
from ..pricing import to_major_units, to_minor_units
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
)

logger = logging.getLogger(__name__)

CAPTURE_STATUS = {
    'COMPLETED': ConfirmationStatus.SUCCEEDED,
    'PENDING': ConfirmationStatus.PENDING,
    'DECLINED': ConfirmationStatus.FAILED,
    'FAILED': ConfirmationStatus.FAILED,
    'REFUNDED': ConfirmationStatus.REFUNDED,
    'PARTIALLY_REFUNDED': ConfirmationStatus.REFUNDED,
}

ORDER_STATUS = {
    'CREATED': ConfirmationStatus.PENDING,
    'SAVED': ConfirmationStatus.PENDING,
    'APPROVED': ConfirmationStatus.PENDING,
    'PAYER_ACTION_REQUIRED': ConfirmationStatus.PENDING,
    'VOIDED': ConfirmationStatus.FAILED,
}

# Headers PayPal sends with every webhook delivery, keyed by the field name
# expected by /v1/notifications/verify-webhook-signature.
TRANSMISSION_HEADERS = {
    'auth_algo': 'paypal-auth-algo',
    'cert_url': 'paypal-cert-url',
    'transmission_id': 'paypal-transmission-id',
    'transmission_sig': 'paypal-transmission-sig',
    'transmission_time': 'paypal-transmission-time',
}


class PayPalAdapter(TokenAuthMixin, ProviderAdapter):
    provider = Provider.PAYPAL
    label = "PayPal"
    supported_currencies = ('USD', 'EUR', 'GBP', 'CAD', 'AUD')
    settings_name = 'PAYPAL'
    requires_capture = True
    required_credentials = ('CLIENT_ID', 'CLIENT_SECRET', 'WEBHOOK_ID')

    token_cache = TokenCache()

    def _fetch_token(self):
        data = self._request(
            'POST',
            '/v1/oauth2/token',
            auth=(self.config.get('CLIENT_ID'), self.config.get('CLIENT_SECRET')),
            data={'grant_type': 'client_credentials'},
            headers={'Accept': 'application/json'},
        )
        token = data.get('access_token')
        if not token:
            raise ProviderRejected(detail="PayPal did not issue an access token.")
        return token, data.get('expires_in', 3600)

    def _api(self, method, path, *, request_id=None, retry=False, **kwargs):
        def call(token):
            headers = {
                'Authorization': f'Bearer {token}',
                'Content-Type': 'application/json',
            }
            if request_id:
                headers['PayPal-Request-Id'] = request_id
            return self._request(method, path, headers=headers, retry=retry, **kwargs)
        return self._with_token(call)

    # ------------------------------------------------------------------

    def create_checkout(self, request):
        body = {
            'intent': 'CAPTURE',
            'purchase_units': [{
                'reference_id': str(request.purchase_id),
                'description': request.description[:127],
                'custom_id': request.metadata.to_reference(),
                'amount': {
                    'currency_code': request.currency,
                    'value': to_major_units(request.amount, request.currency),
                },
            }],
            'application_context': {
                'brand_name': self.config.get('BRAND_NAME') or 'Academy',
                'shipping_preference': 'NO_SHIPPING',
                'user_action': 'PAY_NOW',
                'return_url': request.success_url,
                'cancel_url': request.cancel_url,
            },
        }
        order = self._api('POST', '/v2/checkout/orders', json=body, request_id=f'order-{request.purchase_id}')
        approve_url = next(
            (link.get('href') for link in order.get('links', []) if link.get('rel') in ('approve', 'payer-action')),
            None,
        )
        if not order.get('id') or not approve_url:
            raise ProviderRejected(detail="PayPal did not return an approval link.")
        return CheckoutSession(redirect_url=approve_url, session_ref=order['id'], raw=order)

    def capture(self, session_ref):
        """Capture an approved order. Repeating it returns the original capture."""
        order = self._api(
            'POST',
            f'/v2/checkout/orders/{session_ref}/capture',
            json={},
            request_id=f'capture-{session_ref}',
        )
        return self._confirmation_from_order(order)

    def retrieve_confirmation(self, ref):
        order = self._api('GET', f'/v2/checkout/orders/{ref}', retry=True)
        return self._confirmation_from_order(order)

    def _confirmation_from_order(self, order):
        units = order.get('purchase_units') or [{}]
        unit = units[0]
        captures = (unit.get('payments') or {}).get('captures') or []
        payer_email = (order.get('payer') or {}).get('email_address')

        if captures:
            capture = captures[0]
            amount = capture.get('amount') or {}
            currency = amount.get('currency_code')
            return Confirmation(
                status=CAPTURE_STATUS.get(capture.get('status'), ConfirmationStatus.PENDING),
                paid_amount=to_minor_units(amount['value'], currency) if amount.get('value') else None,
                currency=currency,
                provider_transaction_id=capture.get('id'),
                session_ref=order.get('id'),
                payer_email=payer_email,
                metadata=metadata_from_reference(capture.get('custom_id') or unit.get('custom_id')),
                raw_status=capture.get('status') or '',
            )

        amount = unit.get('amount') or {}
        return Confirmation(
            status=ORDER_STATUS.get(order.get('status'), ConfirmationStatus.PENDING),
            paid_amount=None,
            currency=amount.get('currency_code'),
            provider_transaction_id=None,
            session_ref=order.get('id'),
            payer_email=payer_email,
            metadata=metadata_from_reference(unit.get('custom_id')),
            raw_status=order.get('status') or '',
        )

    def create_refund(self, provider_transaction_id, amount=None, currency=None):
        body = {}
        if amount is not None:
            body['amount'] = {'value': to_major_units(amount, currency), 'currency_code': currency}
        refund = self._api(
            'POST',
            f'/v2/payments/captures/{provider_transaction_id}/refund',
            json=body,
            request_id=f'refund-{provider_transaction_id}-{amount or "full"}',
        )
        if refund.get('status') in ('FAILED', 'CANCELLED'):
            raise ProviderRejected(detail="PayPal declined the refund.")
        return RefundResult(refund_id=refund.get('id', ''), status=refund.get('status', ''))

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, headers, body, query=None):
        """Ask PayPal to verify the transmission; PayPal signs with a cert chain, not a shared secret."""
        fields = {name: headers.get(header) for name, header in TRANSMISSION_HEADERS.items()}
        if not all(fields.values()):
            return False
        try:
            event = json.loads(body)
        except ValueError:
            return False
        result = self._api(
            'POST',
            '/v1/notifications/verify-webhook-signature',
            json={**fields, 'webhook_id': self.config.get('WEBHOOK_ID'), 'webhook_event': event},
        )
        return result.get('verification_status') == 'SUCCESS'

    def parse_webhook(self, payload, query=None):
        event_type = payload.get('event_type') or ''
        event_id = payload.get('id')
        resource = payload.get('resource') or {}

        if event_type == 'CHECKOUT.ORDER.APPROVED':
            units = resource.get('purchase_units') or [{}]
            if not resource.get('id'):
                raise WebhookPayloadError("Approved order without id")
            return PaymentEvent(
                provider=self.provider,
                kind=EventKind.APPROVED,
                event_type=event_type,
                event_id=event_id,
                session_ref=resource['id'],
                metadata=metadata_from_reference(units[0].get('custom_id')),
                raw_status=resource.get('status') or 'APPROVED',
            )

        if event_type in ('PAYMENT.CAPTURE.COMPLETED', 'PAYMENT.CAPTURE.DENIED', 'PAYMENT.CAPTURE.DECLINED'):
            if not resource.get('id'):
                raise WebhookPayloadError("Capture event without id")
            amount = resource.get('amount') or {}
            currency = amount.get('currency_code')
            related = (resource.get('supplementary_data') or {}).get('related_ids') or {}
            succeeded = event_type == 'PAYMENT.CAPTURE.COMPLETED'
            return PaymentEvent(
                provider=self.provider,
                kind=EventKind.SUCCEEDED if succeeded else EventKind.FAILED,
                event_type=event_type,
                event_id=event_id,
                session_ref=related.get('order_id'),
                provider_transaction_id=resource['id'],
                amount=to_minor_units(amount['value'], currency) if amount.get('value') else None,
                currency=currency,
                metadata=metadata_from_reference(resource.get('custom_id')),
                raw_status=resource.get('status') or '',
                reason='' if succeeded else 'capture_denied',
            )

        if event_type == 'PAYMENT.CAPTURE.REFUNDED':
            capture_id = self._capture_id_from_links(resource.get('links') or [])
            if not capture_id:
                raise WebhookPayloadError("Refund event without capture link")
            return PaymentEvent(
                provider=self.provider,
                kind=EventKind.REFUNDED,
                event_type=event_type,
                event_id=event_id,
                provider_transaction_id=capture_id,
                metadata=metadata_from_reference(resource.get('custom_id')),
                refund_id=resource.get('id', ''),
                raw_status=resource.get('status') or 'REFUNDED',
            )

        return PaymentEvent(provider=self.provider, kind=EventKind.IGNORED, event_type=event_type, event_id=event_id)

    @staticmethod
    def _capture_id_from_links(links):
        for link in links:
            if link.get('rel') == 'up' and '/captures/' in (link.get('href') or ''):
                return link['href'].rstrip('/').rsplit('/', 1)[-1]
        return None
