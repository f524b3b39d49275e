"""
Payments views for the Academy course marketplace.
"""
import logging
import uuid

from django.conf import settings
from django.http import Http404
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema
from rest_framework import filters, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework.views import APIView

from .checkout import CheckoutOrchestrator
from .models import Coupon, GatewayEventLog, Provider, Purchase
from .providers import enabled_adapters
from .refunds import refund_purchase
from .serializers import (
    AdminPurchaseSerializer,
    CaptureRequestSerializer,
    CheckoutRequestSerializer,
    CheckoutResponseSerializer,
    CouponSerializer,
    CouponValidateSerializer,
    ProviderSerializer,
    PurchaseSerializer,
    QuoteSerializer,
    RefundRequestSerializer,
    RefundResponseSerializer,
)
from .webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)

MAX_WEBHOOK_SIZE = settings.PAYMENTS.get('WEBHOOK_MAX_SIZE', 1024 * 100)  # 100KB default


# ----------------------------------------------------------------------
# CHECKOUT
# ----------------------------------------------------------------------

class CheckoutView(APIView):
    """
    Create a PENDING purchase and a provider checkout session.
    Returns the URL the buyer must be redirected to.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(request=CheckoutRequestSerializer, responses={201: CheckoutResponseSerializer})
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = CheckoutOrchestrator().create_checkout(
            user=request.user,
            course_id=data['course_id'],
            provider=data['provider'],
            coupon_code=data.get('coupon_code') or None,
            phone=data.get('phone') or None,
        )
        return Response(
            CheckoutResponseSerializer({
                'purchase_id': result.purchase.id,
                'provider': result.purchase.provider,
                'redirect_url': result.redirect_url,
            }).data,
            status=status.HTTP_201_CREATED,
        )


class CouponValidateView(APIView):
    """Quote a course with a coupon applied. Nothing is reserved or consumed."""
    permission_classes = [IsAuthenticated]

    @extend_schema(request=CouponValidateSerializer, responses={200: QuoteSerializer})
    def post(self, request):
        serializer = CouponValidateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        quote = CheckoutOrchestrator().quote(
            request.user,
            serializer.validated_data['course_id'],
            serializer.validated_data['coupon_code'],
        )
        return Response(QuoteSerializer(quote).data)


class ProviderListView(APIView):
    """Payment providers currently enabled, with their labels and currencies."""
    permission_classes = [AllowAny]

    @extend_schema(responses={200: ProviderSerializer(many=True)})
    def get(self, request):
        providers = [adapter.describe() for adapter in enabled_adapters()]
        return Response(ProviderSerializer(providers, many=True).data)


class PayPalCaptureView(APIView):
    """
    Capture a PayPal order after the buyer is redirected back.
    Safe to call more than once; a webhook may already have captured it.
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(request=CaptureRequestSerializer, responses={200: PurchaseSerializer})
    def post(self, request):
        serializer = CaptureRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            purchase = CheckoutOrchestrator().capture(
                Provider.PAYPAL,
                serializer.validated_data['order_id'],
                user=request.user,
            )
        except Purchase.DoesNotExist:
            raise Http404("Purchase not found")
        return Response(PurchaseSerializer(purchase).data)


# ----------------------------------------------------------------------
# PURCHASES & COUPONS
# ----------------------------------------------------------------------

class PurchaseViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Buyers see their own purchases (the redirect-back page polls this);
    staff see everything and may issue refunds.
    """
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ['status', 'provider', 'course']
    ordering_fields = ['created_at', 'confirmed_at']

    def get_queryset(self):
        # During schema generation, avoid accessing request.user
        if getattr(self, "swagger_fake_view", False):
            return Purchase.objects.none()

        queryset = Purchase.objects.select_related('course', 'coupon')
        if self.request.user.is_staff:
            return queryset
        return queryset.filter(user=self.request.user)

    def get_serializer_class(self):
        if self.request is not None and self.request.user.is_staff:
            return AdminPurchaseSerializer
        return PurchaseSerializer

    @extend_schema(request=RefundRequestSerializer, responses={200: RefundResponseSerializer})
    @action(detail=True, methods=['post'], permission_classes=[IsAdminUser])
    def refund(self, request, pk=None):
        """Refund a completed purchase in full or in part."""
        purchase = self.get_object()
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        outcome = refund_purchase(purchase.id, amount=serializer.validated_data.get('amount'))
        logger.info(f"Admin {request.user.pk} refunded purchase {purchase.id} ({outcome.refund_id})")
        return Response(RefundResponseSerializer({
            'refund_id': outcome.refund_id,
            'status': outcome.status,
            'purchase': outcome.purchase,
        }).data)


class CouponViewSet(viewsets.ModelViewSet):
    """
    CRUD for coupons. Admin only.
    """
    queryset = Coupon.objects.all().order_by('-created_at')
    serializer_class = CouponSerializer
    permission_classes = [IsAdminUser]
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ['is_active', 'discount_type', 'course']
    search_fields = ['code', 'description']
    ordering_fields = ['created_at', 'start_date', 'expiry_date', 'used_count']


# ----------------------------------------------------------------------
# PAYMENT GATEWAY WEBHOOKS
# ----------------------------------------------------------------------

class PaymentWebhookThrottle(AnonRateThrottle):
    """Rate limit for unauthenticated webhook endpoints."""
    scope = 'payment_webhook'
    rate = settings.PAYMENTS.get('WEBHOOK_THROTTLE_RATE', '600/hour')


@extend_schema(exclude=True)
class ProviderWebhookView(APIView):
    """
    Shared webhook handler; subclasses only name their provider.
    - Correlation ID for tracing (set by CorrelationIdMiddleware).
    - Payload size limit.
    - Signature verification on the raw body (or provider-defined fields).
    - Idempotent ledger updates via WebhookDispatcher.
    - Immutable GatewayEventLog row written AFTER processing with the
      actual HTTP status code; buyer data masked.
    """
    provider = None
    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [PaymentWebhookThrottle]

    def post(self, request):
        # 0. Correlation ID for tracing
        correlation_id = getattr(request, 'correlation_id', None) or str(uuid.uuid4())
        logger.info(f"[{correlation_id}] {self.provider} webhook received")

        # 1. Payload size limit
        raw_body = request.body
        if len(raw_body) > MAX_WEBHOOK_SIZE:
            logger.error(f"[{correlation_id}] {self.provider} webhook payload too large: {len(raw_body)} bytes")
            self._log_event(None, None, {}, 413, 'Payload too large', raw_body, correlation_id)
            return Response({'error': 'Payload too large'}, status=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE)

        result = None
        try:
            # 2. Verify, parse and apply
            result = WebhookDispatcher().dispatch(
                self.provider,
                headers=request.headers,
                body=raw_body,
                query=request.query_params.dict(),
                correlation_id=correlation_id,
            )
        except Exception as e:
            logger.exception(f"[{correlation_id}] {self.provider} webhook error: {e}")
            self._log_event(None, None, {}, 500, str(e), raw_body, correlation_id)
            return Response({'error': 'Internal server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        # 3. Log event AFTER processing with final outcome
        self._log_event(
            event_type=result.event.event_type if result.event else None,
            reference=result.reference,
            payload=result.payload or {},
            status_code=result.status_code,
            error=result.error,
            raw_payload=raw_body,
            correlation_id=correlation_id,
        )

        if result.status_code >= 400:
            return Response({'error': result.error or result.outcome}, status=result.status_code)
        return Response({'status': result.outcome}, status=result.status_code)

    def _log_event(self, event_type, reference, payload, status_code, error=None, raw_payload=None, correlation_id=None):
        """Create the immutable audit row for this delivery."""
        payload_hash = GatewayEventLog.hash_payload(raw_payload) if raw_payload else None
        GatewayEventLog.objects.create(
            provider=self.provider,
            event_type=event_type,
            reference=reference,
            payload=payload,          # Masked parsed payload
            status_code=status_code,
            error_message=str(error) if error else '',
            correlation_id=correlation_id or '',
            payload_hash=payload_hash,
        )


class CardWebhookView(ProviderWebhookView):
    provider = Provider.CARD


class PayPalWebhookView(ProviderWebhookView):
    provider = Provider.PAYPAL


class RegionalWebhookView(ProviderWebhookView):
    provider = Provider.REGIONAL


class GulfWebhookView(ProviderWebhookView):
    provider = Provider.GULF
