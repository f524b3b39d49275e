# FILE: /academy/apps/payments/providers/gulf.py
"""
Tap Payments (Gulf region).

A single ``POST /charges`` with ``source.id = "src_all"`` lets the buyer pick
any payment method on Tap's hosted page. Amounts travel in major units, so
three-decimal currencies (KWD, BHD, OMR) are converted with care.
"""
import logging

from academy.core.exceptions import ProviderRejected
from ..metadata import MetadataError, purchase_id_from_reference
from ..models import Provider
from ..pricing import to_major_units, to_minor_units
from ..signatures import verify_body_hmac_sha256
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
    split_name,
)

logger = logging.getLogger(__name__)

PENDING_STATUSES = {'INITIATED', 'IN_PROGRESS'}
SUCCESS_STATUS = 'CAPTURED'
DEFAULT_PHONE_COUNTRY_CODE = '20'


def _major(amount, currency):
    return float(to_major_units(amount, currency))


def build_customer(email, name, phone=None, country_code=DEFAULT_PHONE_COUNTRY_CODE):
    first_name, last_name = split_name(name, placeholder='')
    customer = {
        'first_name': first_name or 'Customer',
        'last_name': last_name,
        'email': email,
    }
    if phone:
        number = phone.strip().lstrip('+')
        if number.startswith(country_code):
            number = number[len(country_code):]
        customer['phone'] = {'country_code': f'+{country_code}', 'number': number}
    return customer


class GulfAdapter(ProviderAdapter):
    provider = Provider.GULF
    label = "Tap (Gulf)"
    supported_currencies = ('SAR', 'AED', 'KWD', 'BHD', 'OMR', 'QAR', 'EGP')
    settings_name = 'TAP'
    refund_requires_amount = True
    required_credentials = ('SECRET_KEY',)

    @property
    def _headers(self):
        return {
            'Authorization': f"Bearer {self.config.get('SECRET_KEY')}",
            'Content-Type': 'application/json',
        }

    # ------------------------------------------------------------------

    def create_checkout(self, request):
        body = {
            'amount': _major(request.amount, request.currency),
            'currency': request.currency,
            'threeDSecure': True,
            'save_card': False,
            'description': request.description[:255],
            'statement_descriptor': self.config.get('STATEMENT_DESCRIPTOR') or 'Academy',
            'metadata': request.metadata.to_dict(),
            'reference': {
                'transaction': str(request.purchase_id),
                'order': str(request.purchase_id),
            },
            'receipt': {'email': True, 'sms': False},
            'customer': build_customer(
                request.buyer_email,
                request.buyer_name,
                request.buyer_phone,
                self.config.get('PHONE_COUNTRY_CODE') or DEFAULT_PHONE_COUNTRY_CODE,
            ),
            'source': {'id': 'src_all'},
            'redirect': {'url': request.success_url},
        }
        if self.config.get('POST_URL'):
            body['post'] = {'url': self.config['POST_URL']}

        charge = self._request('POST', 'charges', json=body, headers=self._headers)
        redirect_url = (charge.get('transaction') or {}).get('url')
        if not charge.get('id') or not redirect_url:
            raise ProviderRejected(detail="Tap did not return a payment page.")
        return CheckoutSession(redirect_url=redirect_url, session_ref=charge['id'], raw={'status': charge.get('status')})

    def retrieve_confirmation(self, ref):
        charge = self._request('GET', f'charges/{ref}', headers=self._headers, retry=True)
        return self._confirmation_from_charge(charge)

    @staticmethod
    def _charge_status(raw_status):
        if raw_status == SUCCESS_STATUS:
            return ConfirmationStatus.SUCCEEDED
        if raw_status in PENDING_STATUSES:
            return ConfirmationStatus.PENDING
        return ConfirmationStatus.FAILED

    def _confirmation_from_charge(self, charge):
        raw_status = (charge.get('status') or '').upper()
        currency = charge.get('currency')
        amount = charge.get('amount')
        return Confirmation(
            status=self._charge_status(raw_status),
            paid_amount=to_minor_units(amount, currency) if amount is not None and currency else None,
            currency=currency,
            provider_transaction_id=charge.get('id'),
            session_ref=charge.get('id'),
            payer_email=(charge.get('customer') or {}).get('email'),
            metadata=metadata_from_dict(charge.get('metadata')),
            raw_status=raw_status,
        )

    def create_refund(self, provider_transaction_id, amount=None, currency=None):
        if amount is None or not currency:
            raise ProviderRejected(detail="Tap refunds need an amount and currency.", reason="amount_required")
        refund = self._request('POST', 'refunds', headers=self._headers, json={
            'charge_id': provider_transaction_id,
            'amount': _major(amount, currency),
            'currency': currency,
            'reason': 'requested_by_customer',
            'reference': {'merchant': f'refund-{provider_transaction_id}'},
        })
        if (refund.get('status') or '').upper() in ('FAILED', 'DECLINED', 'CANCELLED'):
            raise ProviderRejected(detail="Tap declined the refund.")
        return RefundResult(refund_id=refund.get('id', ''), status=refund.get('status', ''))

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, headers, body, query=None):
        secret = self.config.get('WEBHOOK_SECRET') or self.config.get('SECRET_KEY')
        return verify_body_hmac_sha256(body, headers.get('hashstring', ''), secret)

    def parse_webhook(self, payload, query=None):
        obj_type = payload.get('object') or 'charge'
        raw_status = (payload.get('status') or '').upper()

        if obj_type == 'refund':
            if raw_status != 'REFUNDED':
                return PaymentEvent(provider=self.provider, kind=EventKind.IGNORED, event_type='refund', raw_status=raw_status)
            if not payload.get('charge_id'):
                raise WebhookPayloadError("Refund callback without charge_id")
            return PaymentEvent(
                provider=self.provider,
                kind=EventKind.REFUNDED,
                event_type='refund',
                event_id=payload.get('id'),
                provider_transaction_id=payload['charge_id'],
                refund_id=payload.get('id', ''),
                raw_status=raw_status,
            )

        if obj_type != 'charge':
            return PaymentEvent(provider=self.provider, kind=EventKind.IGNORED, event_type=obj_type)
        if not payload.get('id'):
            raise WebhookPayloadError("Charge callback without id")

        confirmation = self._confirmation_from_charge(payload)
        kind = {
            ConfirmationStatus.SUCCEEDED: EventKind.SUCCEEDED,
            ConfirmationStatus.FAILED: EventKind.FAILED,
        }.get(confirmation.status, EventKind.IGNORED)

        return PaymentEvent(
            provider=self.provider,
            kind=kind,
            event_type='charge',
            event_id=payload['id'],
            purchase_id=self._purchase_id_from_reference(payload.get('reference') or {}),
            session_ref=confirmation.session_ref,
            provider_transaction_id=confirmation.provider_transaction_id,
            amount=confirmation.paid_amount,
            currency=confirmation.currency,
            payer_email=confirmation.payer_email,
            metadata=confirmation.metadata,
            raw_status=raw_status,
            reason=raw_status.lower() if kind == EventKind.FAILED else '',
        )

    @staticmethod
    def _purchase_id_from_reference(reference):
        if not reference.get('order'):
            return None
        try:
            return purchase_id_from_reference(reference['order'])
        except MetadataError:
            return None
