# FILE: /academy/apps/payments/refunds.py
"""
Admin-triggered refunds.

The provider refund is issued first; only a provider-accepted refund moves
the purchase to REFUNDED. Platform and instructor shares are left as they
were; reversal accounting happens downstream.
"""
import logging
from dataclasses import dataclass

from rest_framework.exceptions import ValidationError

from academy.core.exceptions import InvalidStateTransition
from .ledger import PurchaseLedger
from .models import Purchase
from .providers import get_adapter

logger = logging.getLogger(__name__)


@dataclass
class RefundOutcome:
    purchase: Purchase
    refund_id: str
    status: str


def refund_purchase(purchase_id, amount=None, ledger=None, adapter_factory=get_adapter):
    """
    Refund a completed purchase in full, or ``amount`` minor units of it.
    Raises Purchase.DoesNotExist, InvalidStateTransition, ValidationError or a
    provider error.
    """
    ledger = ledger or PurchaseLedger()
    purchase = Purchase.objects.get(pk=purchase_id)

    if not purchase.can_be_refunded:
        if purchase.status != Purchase.Status.COMPLETED:
            raise InvalidStateTransition(purchase.status, Purchase.Status.REFUNDED)
        raise InvalidStateTransition(detail=f"Purchase {purchase.id} has no provider transaction to refund.")

    if purchase.is_free:
        if amount is not None:
            raise ValidationError({'amount': "Free purchases are refunded without an amount."})
        ledger_result = ledger.apply_refund(purchase.id, raw_status='FREE')
        logger.info(f"Revoked free purchase {purchase.id}")
        return RefundOutcome(purchase=ledger_result.purchase, refund_id='', status='succeeded')

    if amount is not None and not (1 <= int(amount) <= purchase.charge_amount):
        raise ValidationError({'amount': f"Refund amount must be between 1 and {purchase.charge_amount}."})

    adapter = adapter_factory(purchase.provider)
    provider_amount = amount
    if provider_amount is None and adapter.refund_requires_amount:
        provider_amount = purchase.charge_amount

    logger.info(
        f"Refunding purchase {purchase.id} via {purchase.provider} ({provider_amount or 'full'} {purchase.currency})"
    )
    result = adapter.create_refund(
        purchase.provider_transaction_id,
        amount=provider_amount,
        currency=purchase.currency,
    )

    ledger_result = ledger.apply_refund(purchase.id, refund_id=result.refund_id, raw_status=result.status)
    return RefundOutcome(purchase=ledger_result.purchase, refund_id=result.refund_id, status=result.status)
