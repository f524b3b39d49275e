# FILE: /academy/apps/payments/webhooks.py
"""
Webhook dispatch: verify -> parse -> route to the ledger.

Providers only ever learn the outcome through the HTTP status code. Any
non-2xx makes them redeliver, which is safe because confirmations are
idempotent; anything that redelivery cannot fix is answered with 200.
"""
import json
import logging
from dataclasses import dataclass
from typing import Optional

from rest_framework import status

from academy.core.exceptions import (
    AuthExpired,
    CheckoutNotAllowed,
    CouponExhausted,
    InvalidSignature,
    InvalidStateTransition,
    ProviderRejected,
    ProviderUnavailable,
)
from .ledger import Outcome, PurchaseLedger
from .models import Purchase
from .providers import get_adapter
from .providers.base import EventKind, PaymentEvent, WebhookPayloadError
from .signatures import payload_hash

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {
    'email', 'email_address', 'customer', 'customer_details', 'payer', 'billing_data',
    'shipping_data', 'source_data', 'card', 'phone', 'phone_number', 'authorization',
}


def mask_sensitive_data(payload):
    """Redact buyer and card details before a payload is logged or stored."""
    if isinstance(payload, list):
        return [mask_sensitive_data(item) for item in payload]
    if not isinstance(payload, dict):
        return payload
    masked = {}
    for key, value in payload.items():
        if key in SENSITIVE_KEYS:
            masked[key] = '***REDACTED***'
        else:
            masked[key] = mask_sensitive_data(value)
    return masked


class DispatchOutcome:
    APPLIED = Outcome.APPLIED
    DUPLICATE = Outcome.DUPLICATE
    IGNORED = "ignored"
    REJECTED = "rejected"


@dataclass
class DispatchResult:
    status_code: int
    outcome: str
    purchase: Optional[Purchase] = None
    event: Optional[PaymentEvent] = None
    payload: Optional[dict] = None
    error: str = ""

    @property
    def reference(self):
        if self.purchase is not None:
            return str(self.purchase.id)
        if self.event is not None:
            return self.event.provider_transaction_id or self.event.session_ref
        return None


class WebhookDispatcher:

    def __init__(self, ledger=None, adapter_factory=get_adapter):
        self.ledger = ledger or PurchaseLedger()
        self.adapter_factory = adapter_factory

    def dispatch(self, provider, headers, body, query=None, correlation_id=None):
        prefix = f"[{correlation_id}] " if correlation_id else ""
        headers = {str(key).lower(): value for key, value in (headers or {}).items()}
        query = dict(query or {})
        body_hash = payload_hash(body)

        try:
            adapter = self.adapter_factory(provider)
        except CheckoutNotAllowed:
            return DispatchResult(status.HTTP_404_NOT_FOUND, DispatchOutcome.REJECTED, error="Unknown provider")

        # 1. Signature
        try:
            if not adapter.verify_webhook(headers, body, query):
                raise InvalidSignature()
        except InvalidSignature:
            logger.warning(f"{prefix}{adapter.provider} webhook rejected: invalid signature (payload sha256={body_hash})")
            return DispatchResult(status.HTTP_401_UNAUTHORIZED, DispatchOutcome.REJECTED, error="Invalid signature")
        except (ProviderUnavailable, AuthExpired, ProviderRejected) as exc:
            # Remote verification (PayPal) could not be completed; let the provider retry
            logger.warning(f"{prefix}{adapter.provider} webhook verification unavailable: {exc.reason}")
            return DispatchResult(status.HTTP_503_SERVICE_UNAVAILABLE, DispatchOutcome.REJECTED, error="Verification unavailable")

        # 2. Parse
        try:
            payload = json.loads(body)
            if not isinstance(payload, dict):
                raise WebhookPayloadError("Webhook body is not an object")
            event = adapter.parse_webhook(payload, query)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            # json.JSONDecodeError, MetadataError and WebhookPayloadError are ValueErrors
            logger.error(f"{prefix}{adapter.provider} webhook malformed: {exc} (payload sha256={body_hash})")
            return DispatchResult(status.HTTP_400_BAD_REQUEST, DispatchOutcome.REJECTED, error=f"Malformed payload: {exc}")
        event.payload_hash = body_hash

        # 3. Route
        result = self._route(adapter, event, prefix)
        result.event = event
        result.payload = mask_sensitive_data(payload)
        return result

    def _route(self, adapter, event, prefix=""):
        try:
            if event.kind == EventKind.APPROVED:
                event = self._capture(adapter, event, prefix)

            if event.kind == EventKind.SUCCEEDED:
                ledger_result = self.ledger.apply_confirmation(event)
            elif event.kind == EventKind.FAILED:
                ledger_result = self.ledger.apply_failure(event)
            elif event.kind == EventKind.REFUNDED:
                ledger_result = self.ledger.apply_refund_event(event)
            else:
                logger.info(f"{prefix}{event.provider} webhook ignored: {event.event_type or event.raw_status}")
                return DispatchResult(status.HTTP_200_OK, DispatchOutcome.IGNORED)

        except Purchase.DoesNotExist as exc:
            logger.error(f"{prefix}{event.provider} webhook for unknown purchase: {exc}")
            return DispatchResult(status.HTTP_404_NOT_FOUND, DispatchOutcome.REJECTED, error="Purchase not found")
        except CouponExhausted as exc:
            logger.warning(f"{prefix}{event.provider} webhook: {exc.detail}")
            purchase = self._find_quietly(event)
            return DispatchResult(status.HTTP_200_OK, DispatchOutcome.APPLIED, purchase=purchase, error="coupon_exhausted")
        except InvalidStateTransition as exc:
            logger.warning(f"{prefix}{event.provider} webhook: {exc.detail}")
            return DispatchResult(status.HTTP_409_CONFLICT, DispatchOutcome.REJECTED, error=str(exc.detail))
        except (ProviderUnavailable, AuthExpired) as exc:
            logger.warning(f"{prefix}{event.provider} webhook: provider unavailable during {event.event_type}")
            return DispatchResult(status.HTTP_503_SERVICE_UNAVAILABLE, DispatchOutcome.REJECTED, error=exc.reason)
        except ValueError as exc:
            logger.error(f"{prefix}{event.provider} webhook unusable event: {exc}")
            return DispatchResult(status.HTTP_400_BAD_REQUEST, DispatchOutcome.REJECTED, error=str(exc))

        logger.info(
            f"{prefix}{event.provider} webhook {ledger_result.outcome}: "
            f"purchase {ledger_result.purchase.id} is {ledger_result.purchase.status}"
        )
        return DispatchResult(status.HTTP_200_OK, ledger_result.outcome, purchase=ledger_result.purchase)

    def _capture(self, adapter, event, prefix):
        """Buyer approved a two-phase payment; capture it server-side."""
        purchase = self.ledger.locate(event, lock=False)
        if not purchase.is_pending:
            logger.info(f"{prefix}Purchase {purchase.id} already {purchase.status}; skipping capture")
            return PaymentEvent(provider=event.provider, kind=EventKind.IGNORED, event_type=event.event_type)

        try:
            confirmation = adapter.capture(event.session_ref)
        except ProviderRejected as exc:
            logger.warning(f"{prefix}Capture of {event.session_ref} rejected: {exc.detail}")
            return PaymentEvent(
                provider=event.provider,
                kind=EventKind.FAILED,
                event_type=event.event_type,
                purchase_id=purchase.id,
                session_ref=event.session_ref,
                raw_status='CAPTURE_REJECTED',
                reason='capture_rejected',
                payload_hash=event.payload_hash,
            )

        captured = PaymentEvent.from_confirmation(event.provider, confirmation, event_type=event.event_type)
        captured.purchase_id = captured.purchase_id or purchase.id
        captured.session_ref = captured.session_ref or event.session_ref
        captured.payload_hash = event.payload_hash
        return captured

    def _find_quietly(self, event):
        try:
            return self.ledger.locate(event, lock=False)
        except Purchase.DoesNotExist:
            return None
