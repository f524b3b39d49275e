# FILE: /academy/apps/payments/tests/test_ledger.py
import threading
from datetime import timedelta
from unittest import skipUnless
from unittest.mock import patch

from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from academy.apps.courses.models import Enrollment, InstructorEarning
from academy.apps.payments.ledger import Outcome, PurchaseLedger
from academy.apps.payments.models import Coupon, Provider, Purchase
from academy.apps.payments.providers.base import EventKind, PaymentEvent
from academy.core.exceptions import CouponExhausted, InvalidStateTransition
from tests.factories import CouponFactory, PurchaseFactory

RECEIPT_TASK = 'academy.apps.payments.tasks.send_purchase_receipt_email.delay'


def success_event(purchase, txn_id='pi_123', **overrides):
    fields = {
        'provider': purchase.provider,
        'kind': EventKind.SUCCEEDED,
        'event_type': 'checkout.session.completed',
        'purchase_id': purchase.id,
        'session_ref': purchase.provider_session_ref,
        'provider_transaction_id': txn_id,
        'amount': purchase.charge_amount,
        'currency': purchase.currency,
        'raw_status': 'paid',
        'payload_hash': 'a' * 64,
    }
    fields.update(overrides)
    return PaymentEvent(**fields)


class ConfirmationTestCase(TestCase):

    def setUp(self):
        self.ledger = PurchaseLedger()
        self.purchase = PurchaseFactory()

    def test_confirmation_completes_purchase_and_enrolls(self):
        with patch(RECEIPT_TASK) as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                result = self.ledger.apply_confirmation(success_event(self.purchase))

        self.assertEqual(result.outcome, Outcome.APPLIED)
        self.purchase.refresh_from_db()
        self.assertEqual(self.purchase.status, Purchase.Status.COMPLETED)
        self.assertEqual(self.purchase.provider_transaction_id, 'pi_123')
        self.assertIsNotNone(self.purchase.confirmed_at)
        self.assertTrue(self.purchase.is_reconciled)
        self.assertTrue(
            Enrollment.objects.filter(user=self.purchase.user, course=self.purchase.course).exists()
        )
        earning = InstructorEarning.objects.get(purchase=self.purchase)
        self.assertEqual(earning.amount, self.purchase.instructor_share)
        self.assertEqual(earning.instructor, self.purchase.course.instructor)
        mock_delay.assert_called_once_with(str(self.purchase.id))

    def test_replay_is_duplicate_without_side_effects(self):
        with patch(RECEIPT_TASK) as mock_delay:
            with self.captureOnCommitCallbacks(execute=True):
                self.ledger.apply_confirmation(success_event(self.purchase))
            with self.captureOnCommitCallbacks(execute=True):
                replay = self.ledger.apply_confirmation(success_event(self.purchase))

        self.assertTrue(replay.is_duplicate)
        self.assertEqual(mock_delay.call_count, 1)
        self.assertEqual(Enrollment.objects.count(), 1)
        self.assertEqual(InstructorEarning.objects.count(), 1)

    def test_confirmation_requires_transaction_id(self):
        with self.assertRaises(ValueError):
            self.ledger.apply_confirmation(success_event(self.purchase, txn_id=None))

    def test_amount_mismatch_fails_purchase(self):
        event = success_event(self.purchase, amount=self.purchase.charge_amount - 1)
        result = self.ledger.apply_confirmation(event)

        self.assertEqual(result.purchase.status, Purchase.Status.FAILED)
        self.assertEqual(result.purchase.status_reason, 'amount_mismatch')
        self.assertFalse(Enrollment.objects.exists())

    def test_currency_mismatch_fails_purchase(self):
        result = self.ledger.apply_confirmation(success_event(self.purchase, currency='eur'))
        self.assertEqual(result.purchase.status_reason, 'currency_mismatch')

    def test_failed_purchase_cannot_complete(self):
        self.ledger.fail_if_pending(self.purchase.id, 'expired')
        with self.assertRaises(InvalidStateTransition):
            self.ledger.apply_confirmation(success_event(self.purchase, txn_id='pi_late'))
        self.purchase.refresh_from_db()
        self.assertEqual(self.purchase.status, Purchase.Status.FAILED)

    def test_unknown_purchase(self):
        other = PurchaseFactory.build()
        with self.assertRaises(Purchase.DoesNotExist):
            self.ledger.apply_confirmation(
                success_event(other, session_ref='cs_unknown', provider=Provider.CARD)
            )

    def test_located_by_session_ref_when_metadata_lost(self):
        event = success_event(self.purchase, purchase_id=None)
        with patch(RECEIPT_TASK):
            result = self.ledger.apply_confirmation(event)
        self.assertEqual(result.purchase.pk, self.purchase.pk)
        self.assertEqual(result.purchase.status, Purchase.Status.COMPLETED)


class CouponRedemptionTestCase(TestCase):

    def setUp(self):
        self.ledger = PurchaseLedger()

    def test_coupon_counted_on_confirmation(self):
        coupon = CouponFactory(max_uses=2)
        purchase = PurchaseFactory(coupon=coupon)
        with patch(RECEIPT_TASK):
            self.ledger.apply_confirmation(success_event(purchase))
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)

    def test_last_use_taken_by_another_purchase(self):
        coupon = CouponFactory(max_uses=1, used_count=1)
        purchase = PurchaseFactory(coupon=coupon)

        with self.assertRaises(CouponExhausted):
            self.ledger.apply_confirmation(success_event(purchase))

        purchase.refresh_from_db()
        coupon.refresh_from_db()
        self.assertEqual(purchase.status, Purchase.Status.FAILED)
        self.assertEqual(purchase.status_reason, 'coupon_exhausted')
        self.assertEqual(purchase.provider_transaction_id, 'pi_123')
        self.assertEqual(coupon.used_count, 1)
        self.assertFalse(Enrollment.objects.exists())

    def test_single_use_coupon_shared_by_many_purchases(self):
        coupon = CouponFactory(max_uses=1)
        purchases = [PurchaseFactory(coupon=coupon) for _ in range(4)]

        exhausted = 0
        with patch(RECEIPT_TASK):
            for n, purchase in enumerate(purchases):
                try:
                    self.ledger.apply_confirmation(success_event(purchase, txn_id=f'pi_{n}'))
                except CouponExhausted:
                    exhausted += 1

        statuses = sorted(Purchase.objects.values_list('status', 'status_reason'))
        self.assertEqual(statuses, [
            (Purchase.Status.COMPLETED, ''),
            (Purchase.Status.FAILED, 'coupon_exhausted'),
            (Purchase.Status.FAILED, 'coupon_exhausted'),
            (Purchase.Status.FAILED, 'coupon_exhausted'),
        ])
        self.assertEqual(exhausted, 3)
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)

    def test_coupon_expiring_after_quote_is_honoured(self):
        coupon = CouponFactory(max_uses=5)
        purchase = PurchaseFactory(coupon=coupon)
        Purchase.objects.filter(pk=purchase.pk).update(created_at=timezone.now() - timedelta(hours=2))
        Coupon.objects.filter(pk=coupon.pk).update(expiry_date=timezone.now() - timedelta(hours=1))
        purchase.refresh_from_db()

        with patch(RECEIPT_TASK):
            result = self.ledger.apply_confirmation(success_event(purchase))

        self.assertEqual(result.purchase.status, Purchase.Status.COMPLETED)
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)

    def test_coupon_expired_before_quote_fails_purchase(self):
        coupon = CouponFactory(max_uses=5)
        purchase = PurchaseFactory(coupon=coupon)
        Coupon.objects.filter(pk=coupon.pk).update(expiry_date=purchase.created_at - timedelta(hours=1))

        result = self.ledger.apply_confirmation(success_event(purchase))

        self.assertEqual(result.outcome, Outcome.APPLIED)
        self.assertEqual(result.purchase.status, Purchase.Status.FAILED)
        self.assertEqual(result.purchase.status_reason, 'coupon_expired')
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 0)
        self.assertFalse(Enrollment.objects.exists())

    def test_deactivated_coupon_still_redeemed(self):
        coupon = CouponFactory(max_uses=5)
        purchase = PurchaseFactory(coupon=coupon)
        Coupon.objects.filter(pk=coupon.pk).update(is_active=False)

        with patch(RECEIPT_TASK):
            result = self.ledger.apply_confirmation(success_event(purchase))

        self.assertEqual(result.purchase.status, Purchase.Status.COMPLETED)


@skipUnless(connection.features.has_select_for_update, "needs row locking")
class ConcurrentCouponRedemptionTestCase(TransactionTestCase):

    def test_parallel_confirmations_on_single_use_coupon(self):
        coupon = CouponFactory(max_uses=1)
        purchases = [PurchaseFactory(coupon=coupon) for _ in range(4)]
        barrier = threading.Barrier(len(purchases))
        errors = []

        def confirm(n, purchase):
            try:
                barrier.wait()
                PurchaseLedger().apply_confirmation(success_event(purchase, txn_id=f'pi_{n}'))
            except CouponExhausted as exc:
                errors.append(exc)
            finally:
                connection.close()

        with patch(RECEIPT_TASK):
            threads = [threading.Thread(target=confirm, args=(n, p)) for n, p in enumerate(purchases)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        self.assertEqual(len(errors), 3)
        self.assertEqual(Purchase.objects.filter(status=Purchase.Status.COMPLETED).count(), 1)
        self.assertEqual(
            Purchase.objects.filter(status=Purchase.Status.FAILED, status_reason='coupon_exhausted').count(), 3
        )
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)


class FailureAndRefundTestCase(TestCase):

    def setUp(self):
        self.ledger = PurchaseLedger()
        self.purchase = PurchaseFactory()

    def _failure(self, **overrides):
        fields = {
            'provider': self.purchase.provider,
            'kind': EventKind.FAILED,
            'purchase_id': self.purchase.id,
            'raw_status': 'expired',
            'reason': 'expired',
        }
        fields.update(overrides)
        return PaymentEvent(**fields)

    def _complete(self):
        with patch(RECEIPT_TASK):
            self.ledger.apply_confirmation(success_event(self.purchase))
        self.purchase.refresh_from_db()

    def test_failure_then_replay(self):
        first = self.ledger.apply_failure(self._failure())
        second = self.ledger.apply_failure(self._failure())

        self.assertEqual(first.outcome, Outcome.APPLIED)
        self.assertEqual(first.purchase.status_reason, 'expired')
        self.assertTrue(second.is_duplicate)

    def test_failure_after_completion_rejected(self):
        self._complete()
        with self.assertRaises(InvalidStateTransition):
            self.ledger.apply_failure(self._failure())

    def test_refund_completed_purchase(self):
        self._complete()
        result = self.ledger.apply_refund(self.purchase.id, refund_id='re_1', raw_status='succeeded')

        self.assertEqual(result.purchase.status, Purchase.Status.REFUNDED)
        self.assertEqual(result.purchase.refund_id, 're_1')
        self.assertIsNotNone(result.purchase.refunded_at)
        self.assertEqual(result.purchase.instructor_share, self.purchase.instructor_share)

        replay = self.ledger.apply_refund(self.purchase.id, refund_id='re_1')
        self.assertTrue(replay.is_duplicate)

    def test_refund_pending_purchase_rejected(self):
        with self.assertRaises(InvalidStateTransition):
            self.ledger.apply_refund(self.purchase.id)

    def test_refund_event_located_by_transaction(self):
        self._complete()
        event = PaymentEvent(
            provider=self.purchase.provider,
            kind=EventKind.REFUNDED,
            provider_transaction_id='pi_123',
            refund_id='re_dash',
        )
        result = self.ledger.apply_refund_event(event)
        self.assertEqual(result.purchase.status, Purchase.Status.REFUNDED)


class SweepTestCase(TestCase):

    def setUp(self):
        self.ledger = PurchaseLedger()

    def test_fail_if_pending_only_once(self):
        purchase = PurchaseFactory()
        self.assertTrue(self.ledger.fail_if_pending(purchase.id, 'cancelled'))
        self.assertFalse(self.ledger.fail_if_pending(purchase.id, 'cancelled'))

    def test_sweep_only_touches_old_pending(self):
        stale = PurchaseFactory()
        fresh = PurchaseFactory()
        Purchase.objects.filter(pk=stale.pk).update(created_at=timezone.now() - timedelta(hours=2))

        swept = self.ledger.sweep_stale(timedelta(minutes=30))

        self.assertEqual(swept, 1)
        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(stale.status, Purchase.Status.FAILED)
        self.assertEqual(stale.status_reason, 'timeout')
        self.assertEqual(fresh.status, Purchase.Status.PENDING)
