# FILE: /academy/apps/payments/tests/test_checkout.py
from decimal import Decimal
from unittest.mock import MagicMock

from django.test import TestCase

from academy.apps.courses.models import Course, Enrollment
from academy.apps.payments.checkout import CheckoutOrchestrator
from academy.apps.payments.metadata import CheckoutMetadata
from academy.apps.payments.models import Coupon, Provider, Purchase
from academy.apps.payments.pricing import SplitConfig
from academy.apps.payments.providers.base import CheckoutSession, Confirmation, ConfirmationStatus
from academy.core.exceptions import CheckoutNotAllowed, CouponInvalid, ProviderUnavailable
from tests.factories import CouponFactory, CourseFactory, PurchaseFactory, UserFactory


def fake_adapter(provider=Provider.CARD, currencies=('USD',), enabled=True):
    adapter = MagicMock()
    adapter.provider = provider
    adapter.label = 'Fake network'
    adapter.is_enabled = enabled
    adapter.supports_currency.side_effect = lambda currency: currency in currencies
    adapter.create_checkout.return_value = CheckoutSession(
        redirect_url='https://pay.example.com/session/abc',
        session_ref='sess_abc',
    )
    return adapter


class CreateCheckoutTestCase(TestCase):

    def setUp(self):
        self.user = UserFactory()
        self.course = CourseFactory(price=20000, currency='USD')
        self.adapter = fake_adapter()
        self.orchestrator = CheckoutOrchestrator(
            config=SplitConfig(platform_fee_percent=Decimal('20')),
            adapter_factory=lambda provider: self.adapter,
        )

    def test_creates_pending_purchase_and_session(self):
        result = self.orchestrator.create_checkout(self.user, self.course.id, 'CARD')

        purchase = Purchase.objects.get(pk=result.purchase.pk)
        self.assertEqual(result.redirect_url, 'https://pay.example.com/session/abc')
        self.assertEqual(purchase.status, Purchase.Status.PENDING)
        self.assertEqual(purchase.provider_session_ref, 'sess_abc')
        self.assertEqual(purchase.charge_amount, 20000)
        self.assertEqual(purchase.platform_share, 4000)
        self.assertEqual(purchase.instructor_share, 16000)
        self.assertEqual(purchase.metadata['purchase_id'], str(purchase.id))

        request = self.adapter.create_checkout.call_args.args[0]
        self.assertEqual(request.purchase_id, purchase.id)
        self.assertEqual(request.amount, 20000)
        self.assertEqual(request.buyer_email, self.user.email)
        self.assertEqual(request.metadata, CheckoutMetadata.for_purchase(purchase))
        self.assertEqual(
            request.success_url,
            f'https://academy.test/checkout/card/success?purchase={purchase.id}',
        )

    def test_coupon_discount_applied_but_not_consumed(self):
        coupon = CouponFactory(code='SPRING', discount_value=Decimal('25'), max_uses=10)
        result = self.orchestrator.create_checkout(self.user, self.course.id, 'CARD', coupon_code=' spring ')

        self.assertEqual(result.purchase.coupon, coupon)
        self.assertEqual(result.purchase.discount_amount, 5000)
        self.assertEqual(result.purchase.charge_amount, 15000)
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 0)

    def test_full_discount_completes_without_provider(self):
        coupon = CouponFactory(code='FREE100', discount_value=Decimal('100'), max_uses=5)

        result = self.orchestrator.create_checkout(self.user, self.course.id, 'CARD', coupon_code='free100')

        purchase = Purchase.objects.get(pk=result.purchase.pk)
        self.assertEqual(purchase.status, Purchase.Status.COMPLETED)
        self.assertEqual(purchase.charge_amount, 0)
        self.assertEqual(purchase.provider_transaction_id, f'free-{purchase.id}')
        self.assertEqual(purchase.platform_share + purchase.instructor_share, 0)
        self.assertTrue(purchase.is_reconciled)
        self.assertEqual(
            result.redirect_url,
            f'https://academy.test/checkout/card/success?purchase={purchase.id}',
        )
        self.assertTrue(Enrollment.objects.filter(user=self.user, course=self.course).exists())
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)
        self.adapter.create_checkout.assert_not_called()

    def test_fixed_coupon_above_price_is_free(self):
        CouponFactory(code='BIGFIX', discount_type=Coupon.DiscountType.FIXED, discount_value=Decimal('50000'))

        result = self.orchestrator.create_checkout(self.user, self.course.id, 'CARD', coupon_code='BIGFIX')

        self.assertEqual(result.purchase.status, Purchase.Status.COMPLETED)
        self.assertEqual(result.purchase.discount_amount, 20000)
        self.adapter.create_checkout.assert_not_called()

    def test_free_checkout_with_exhausted_last_use(self):
        coupon = CouponFactory(code='LASTONE', discount_value=Decimal('100'), max_uses=1)
        self.orchestrator.create_checkout(UserFactory(), self.course.id, 'CARD', coupon_code='LASTONE')

        with self.assertRaises(CouponInvalid) as ctx:
            self.orchestrator.create_checkout(self.user, self.course.id, 'CARD', coupon_code='LASTONE')

        self.assertEqual(ctx.exception.reason, 'exhausted')
        coupon.refresh_from_db()
        self.assertEqual(coupon.used_count, 1)

    def test_disabled_provider(self):
        self.adapter.is_enabled = False
        with self.assertRaises(CheckoutNotAllowed) as ctx:
            self.orchestrator.create_checkout(self.user, self.course.id, 'CARD')
        self.assertEqual(ctx.exception.reason, 'provider_disabled')
        self.assertFalse(Purchase.objects.exists())

    def test_unsupported_currency(self):
        course = CourseFactory(currency='KWD')
        with self.assertRaises(CheckoutNotAllowed) as ctx:
            self.orchestrator.create_checkout(self.user, course.id, 'CARD')
        self.assertEqual(ctx.exception.reason, 'unsupported_currency')

    def test_already_enrolled(self):
        Enrollment.objects.create(user=self.user, course=self.course)
        with self.assertRaises(CheckoutNotAllowed) as ctx:
            self.orchestrator.create_checkout(self.user, self.course.id, 'CARD')
        self.assertEqual(ctx.exception.reason, 'already_enrolled')

    def test_unpublished_course(self):
        course = CourseFactory(status=Course.Status.DRAFT)
        with self.assertRaises(CheckoutNotAllowed) as ctx:
            self.orchestrator.create_checkout(self.user, course.id, 'CARD')
        self.assertEqual(ctx.exception.reason, 'course_unavailable')

    def test_unknown_coupon(self):
        with self.assertRaises(CouponInvalid) as ctx:
            self.orchestrator.create_checkout(self.user, self.course.id, 'CARD', coupon_code='NOPE')
        self.assertEqual(ctx.exception.reason, 'not_found')

    def test_coupon_already_redeemed_by_buyer(self):
        coupon = CouponFactory()
        PurchaseFactory(user=self.user, coupon=coupon, status=Purchase.Status.COMPLETED, provider_transaction_id='pi_old')
        with self.assertRaises(CouponInvalid) as ctx:
            self.orchestrator.create_checkout(self.user, self.course.id, 'CARD', coupon_code=coupon.code)
        self.assertEqual(ctx.exception.reason, 'already_used')

    def test_provider_outage_fails_purchase(self):
        self.adapter.create_checkout.side_effect = ProviderUnavailable()
        with self.assertRaises(ProviderUnavailable):
            self.orchestrator.create_checkout(self.user, self.course.id, 'CARD')

        purchase = Purchase.objects.get(user=self.user)
        self.assertEqual(purchase.status, Purchase.Status.FAILED)
        self.assertEqual(purchase.status_reason, 'provider_unavailable')

    def test_quote_without_side_effects(self):
        CouponFactory(code='HALF', discount_value=Decimal('50'))
        quote = self.orchestrator.quote(self.user, self.course.id, 'half')

        self.assertEqual(quote.split.charge_amount, 10000)
        self.assertEqual(quote.split.platform_share, 2000)
        self.assertFalse(Purchase.objects.exists())


class CaptureTestCase(TestCase):

    def setUp(self):
        self.adapter = fake_adapter(provider=Provider.PAYPAL)
        self.orchestrator = CheckoutOrchestrator(adapter_factory=lambda provider: self.adapter)
        self.purchase = PurchaseFactory(provider=Provider.PAYPAL, provider_session_ref='ORDER-1')

    def _captured(self, status=ConfirmationStatus.SUCCEEDED):
        return Confirmation(
            status=status,
            paid_amount=self.purchase.charge_amount,
            currency=self.purchase.currency,
            provider_transaction_id='CAPTURE-1',
            session_ref='ORDER-1',
            raw_status='COMPLETED',
        )

    def test_capture_completes_purchase(self):
        self.adapter.capture.return_value = self._captured()

        purchase = self.orchestrator.capture(Provider.PAYPAL, 'ORDER-1', user=self.purchase.user)

        self.assertEqual(purchase.status, Purchase.Status.COMPLETED)
        self.assertEqual(purchase.provider_transaction_id, 'CAPTURE-1')
        self.adapter.capture.assert_called_once_with('ORDER-1')

    def test_capture_of_finished_purchase_skips_provider(self):
        Purchase.objects.filter(pk=self.purchase.pk).update(status=Purchase.Status.FAILED)

        purchase = self.orchestrator.capture(Provider.PAYPAL, 'ORDER-1', user=self.purchase.user)

        self.assertEqual(purchase.status, Purchase.Status.FAILED)
        self.adapter.capture.assert_not_called()

    def test_capture_of_someone_elses_order(self):
        with self.assertRaises(Purchase.DoesNotExist):
            self.orchestrator.capture(Provider.PAYPAL, 'ORDER-1', user=UserFactory())
        self.adapter.capture.assert_not_called()

    def test_declined_capture_fails_purchase(self):
        self.adapter.capture.return_value = self._captured(status=ConfirmationStatus.FAILED)

        purchase = self.orchestrator.capture(Provider.PAYPAL, 'ORDER-1', user=self.purchase.user)

        self.assertEqual(purchase.status, Purchase.Status.FAILED)

    def test_still_pending_leaves_purchase_alone(self):
        self.adapter.capture.return_value = self._captured(status=ConfirmationStatus.PENDING)

        purchase = self.orchestrator.capture(Provider.PAYPAL, 'ORDER-1', user=self.purchase.user)

        self.assertEqual(purchase.status, Purchase.Status.PENDING)
