# FILE: /academy/apps/payments/tests/test_refunds.py
from unittest.mock import MagicMock

from django.test import TestCase
from rest_framework.exceptions import ValidationError

from academy.apps.payments.models import Provider, Purchase
from academy.apps.payments.providers.base import RefundResult
from academy.apps.payments.refunds import refund_purchase
from academy.core.exceptions import InvalidStateTransition, ProviderRejected
from tests.factories import PurchaseFactory


class RefundPurchaseTestCase(TestCase):

    def setUp(self):
        self.adapter = MagicMock()
        self.adapter.refund_requires_amount = False
        self.adapter.create_refund.return_value = RefundResult(refund_id='re_1', status='succeeded')
        self.factory = lambda provider: self.adapter

    def completed(self, **kwargs):
        kwargs.setdefault('provider_transaction_id', 'pi_1')
        return PurchaseFactory(status=Purchase.Status.COMPLETED, **kwargs)

    def test_full_refund(self):
        purchase = self.completed()

        outcome = refund_purchase(purchase.id, adapter_factory=self.factory)

        self.assertEqual(outcome.refund_id, 're_1')
        self.assertEqual(outcome.purchase.status, Purchase.Status.REFUNDED)
        self.assertEqual(outcome.purchase.refund_id, 're_1')
        self.assertEqual(outcome.purchase.platform_share, purchase.platform_share)
        self.adapter.create_refund.assert_called_once_with('pi_1', amount=None, currency='USD')

    def test_free_purchase_revoked_without_provider(self):
        purchase = PurchaseFactory(status=Purchase.Status.COMPLETED, discount_amount=20000)
        Purchase.objects.filter(pk=purchase.pk).update(provider_transaction_id=f'free-{purchase.id}')

        outcome = refund_purchase(purchase.id, adapter_factory=self.factory)

        self.assertEqual(outcome.purchase.status, Purchase.Status.REFUNDED)
        self.assertEqual(outcome.refund_id, '')
        self.adapter.create_refund.assert_not_called()

    def test_free_purchase_refund_with_amount_rejected(self):
        purchase = PurchaseFactory(status=Purchase.Status.COMPLETED, discount_amount=20000, provider_transaction_id='free-x')

        with self.assertRaises(ValidationError):
            refund_purchase(purchase.id, amount=1, adapter_factory=self.factory)

        purchase.refresh_from_db()
        self.assertEqual(purchase.status, Purchase.Status.COMPLETED)

    def test_partial_refund(self):
        purchase = self.completed()
        refund_purchase(purchase.id, amount=5000, adapter_factory=self.factory)
        self.adapter.create_refund.assert_called_once_with('pi_1', amount=5000, currency='USD')

    def test_provider_needing_amount_gets_charge_amount(self):
        self.adapter.refund_requires_amount = True
        purchase = self.completed(provider=Provider.REGIONAL)

        refund_purchase(purchase.id, adapter_factory=self.factory)

        self.adapter.create_refund.assert_called_once_with(
            'pi_1', amount=purchase.charge_amount, currency=purchase.currency,
        )

    def test_amount_out_of_range(self):
        purchase = self.completed()
        for amount in (0, purchase.charge_amount + 1):
            with self.assertRaises(ValidationError):
                refund_purchase(purchase.id, amount=amount, adapter_factory=self.factory)
        self.adapter.create_refund.assert_not_called()

    def test_pending_purchase_not_refundable(self):
        purchase = PurchaseFactory()
        with self.assertRaises(InvalidStateTransition):
            refund_purchase(purchase.id, adapter_factory=self.factory)
        self.adapter.create_refund.assert_not_called()

    def test_provider_rejection_keeps_purchase_completed(self):
        self.adapter.create_refund.side_effect = ProviderRejected(detail="Charge already refunded")
        purchase = self.completed()

        with self.assertRaises(ProviderRejected):
            refund_purchase(purchase.id, adapter_factory=self.factory)

        purchase.refresh_from_db()
        self.assertEqual(purchase.status, Purchase.Status.COMPLETED)
