# FILE: /academy/apps/payments/tests/test_views.py
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from academy.apps.courses.models import Enrollment
from academy.apps.payments.models import Coupon, Provider, Purchase
from academy.apps.payments.providers.base import Confirmation, ConfirmationStatus
from academy.apps.payments.providers.paypal import PayPalAdapter
from tests.factories import AdminFactory, CouponFactory, CourseFactory, PurchaseFactory, UserFactory


class CheckoutViewTestCase(APITestCase):

    def setUp(self):
        self.url = reverse('checkout')
        self.user = UserFactory()
        self.course = CourseFactory(price=20000, currency='USD')

    def test_requires_authentication(self):
        response = self.client.post(self.url, {'course_id': str(self.course.id), 'provider': 'CARD'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    @patch('stripe.checkout.Session.create')
    def test_checkout_returns_redirect(self, mock_create):
        mock_create.return_value = MagicMock(url='https://checkout.stripe.com/c/pay/cs_1', id='cs_1')
        self.client.force_authenticate(self.user)

        response = self.client.post(self.url, {'course_id': str(self.course.id), 'provider': 'card'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['provider'], Provider.CARD)
        self.assertEqual(response.data['redirect_url'], 'https://checkout.stripe.com/c/pay/cs_1')
        purchase = Purchase.objects.get(pk=response.data['purchase_id'])
        self.assertEqual(purchase.user, self.user)
        self.assertEqual(purchase.provider_session_ref, 'cs_1')

    def test_already_enrolled_error_shape(self):
        Enrollment.objects.create(user=self.user, course=self.course)
        self.client.force_authenticate(self.user)

        response = self.client.post(self.url, {'course_id': str(self.course.id), 'provider': 'CARD'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(response.data['error'])
        self.assertEqual(response.data['reason'], 'already_enrolled')
        self.assertFalse(Purchase.objects.exists())

    def test_invalid_coupon_error_shape(self):
        self.client.force_authenticate(self.user)
        response = self.client.post(
            self.url,
            {'course_id': str(self.course.id), 'provider': 'CARD', 'coupon_code': 'GHOST'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['reason'], 'not_found')

    def test_unknown_provider_rejected_by_serializer(self):
        self.client.force_authenticate(self.user)
        response = self.client.post(self.url, {'course_id': str(self.course.id), 'provider': 'BITCOIN'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('provider', response.data['details'])


class CouponValidateViewTestCase(APITestCase):

    def test_quote(self):
        user = UserFactory()
        course = CourseFactory(price=20000)
        CouponFactory(code='WELCOME', discount_value=Decimal('10'))
        self.client.force_authenticate(user)

        response = self.client.post(
            reverse('coupon-validate'),
            {'course_id': str(course.id), 'coupon_code': 'welcome'},
            format='json',
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['coupon_code'], 'WELCOME')
        self.assertEqual(response.data['discount_amount'], 2000)
        self.assertEqual(response.data['charge_amount'], 18000)


class ProviderListViewTestCase(APITestCase):

    def test_lists_enabled_providers_anonymously(self):
        response = self.client.get(reverse('providers'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        providers = {item['provider']: item for item in response.data}
        self.assertEqual(set(providers), {'CARD', 'PAYPAL', 'REGIONAL', 'GULF'})
        self.assertTrue(providers['PAYPAL']['requires_capture'])
        self.assertIn('KWD', providers['GULF']['currencies'])

    def test_disabled_provider_hidden(self):
        with self.settings(PAYMENTS={'ENABLED_PROVIDERS': ['CARD']}):
            response = self.client.get(reverse('providers'))
        self.assertEqual([item['provider'] for item in response.data], ['CARD'])


class PayPalCaptureViewTestCase(APITestCase):

    def setUp(self):
        self.url = reverse('paypal-capture')
        self.purchase = PurchaseFactory(provider=Provider.PAYPAL, provider_session_ref='ORDER-1')

    def test_other_users_order_is_not_found(self):
        self.client.force_authenticate(UserFactory())
        response = self.client.post(self.url, {'order_id': 'ORDER-1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    @patch.object(PayPalAdapter, 'capture')
    def test_capture_returns_purchase(self, mock_capture):
        mock_capture.return_value = Confirmation(
            status=ConfirmationStatus.SUCCEEDED,
            paid_amount=self.purchase.charge_amount,
            currency='USD',
            provider_transaction_id='CAPTURE-1',
            session_ref='ORDER-1',
            raw_status='COMPLETED',
        )
        self.client.force_authenticate(self.purchase.user)

        response = self.client.post(self.url, {'order_id': 'ORDER-1'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Purchase.Status.COMPLETED)
        self.assertNotIn('instructor_share', response.data)


class PurchaseViewSetTestCase(APITestCase):

    def setUp(self):
        self.buyer = UserFactory()
        self.own = PurchaseFactory(user=self.buyer)
        self.other = PurchaseFactory()

    def test_buyer_sees_only_own_purchases(self):
        self.client.force_authenticate(self.buyer)
        response = self.client.get(reverse('purchase-list'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = [item['id'] for item in response.data['results']]
        self.assertEqual(ids, [str(self.own.id)])
        self.assertNotIn('platform_share', response.data['results'][0])

    def test_buyer_cannot_read_others(self):
        self.client.force_authenticate(self.buyer)
        response = self.client.get(reverse('purchase-detail', args=[self.other.id]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_staff_sees_everything_with_shares(self):
        self.client.force_authenticate(AdminFactory())
        response = self.client.get(reverse('purchase-list'))

        self.assertEqual(response.data['count'], 2)
        self.assertIn('platform_share', response.data['results'][0])

    def test_buyer_cannot_refund(self):
        self.client.force_authenticate(self.buyer)
        response = self.client.post(reverse('purchase-refund', args=[self.own.id]), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    @patch('stripe.Refund.create')
    def test_admin_refund(self, mock_refund):
        mock_refund.return_value = MagicMock(id='re_1', status='succeeded')
        Purchase.objects.filter(pk=self.own.pk).update(
            status=Purchase.Status.COMPLETED, provider_transaction_id='pi_1'
        )
        self.client.force_authenticate(AdminFactory())

        response = self.client.post(reverse('purchase-refund', args=[self.own.id]), {'amount': 5000}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['refund_id'], 're_1')
        self.assertEqual(response.data['purchase']['status'], Purchase.Status.REFUNDED)
        self.assertEqual(mock_refund.call_args.kwargs['payment_intent'], 'pi_1')
        self.assertEqual(mock_refund.call_args.kwargs['amount'], 5000)

    def test_refund_of_pending_purchase_conflicts(self):
        self.client.force_authenticate(AdminFactory())
        response = self.client.post(reverse('purchase-refund', args=[self.own.id]), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)


class CouponViewSetTestCase(APITestCase):

    def test_admin_creates_coupon_with_normalized_code(self):
        self.client.force_authenticate(AdminFactory())
        response = self.client.post(reverse('coupon-list'), {
            'code': ' summer ',
            'discount_type': Coupon.DiscountType.PERCENTAGE,
            'discount_value': '15.00',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['code'], 'SUMMER')
        self.assertEqual(response.data['used_count'], 0)

    def test_percentage_over_100_rejected(self):
        self.client.force_authenticate(AdminFactory())
        response = self.client.post(reverse('coupon-list'), {
            'code': 'TOOMUCH',
            'discount_type': Coupon.DiscountType.PERCENTAGE,
            'discount_value': '150.00',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_non_staff_forbidden(self):
        self.client.force_authenticate(UserFactory())
        response = self.client.get(reverse('coupon-list'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
