from rest_framework import serializers
from drf_spectacular.utils import extend_schema_field
from drf_spectacular.types import OpenApiTypes

from .models import Coupon, Provider, Purchase


class CheckoutRequestSerializer(serializers.Serializer):
    """Start a checkout for one course with one provider."""
    course_id = serializers.UUIDField()
    provider = serializers.ChoiceField(choices=Provider.choices)
    coupon_code = serializers.CharField(max_length=50, required=False, allow_blank=True)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)

    def to_internal_value(self, data):
        # Accept lower-case provider names from the frontend ("paypal")
        if hasattr(data, 'copy'):
            data = data.copy()
            if isinstance(data.get('provider'), str):
                data['provider'] = data['provider'].upper()
        return super().to_internal_value(data)


class CheckoutResponseSerializer(serializers.Serializer):
    purchase_id = serializers.UUIDField()
    provider = serializers.CharField()
    redirect_url = serializers.URLField()


class CouponValidateSerializer(serializers.Serializer):
    course_id = serializers.UUIDField()
    coupon_code = serializers.CharField(max_length=50)


class QuoteSerializer(serializers.Serializer):
    """Price breakdown in minor currency units."""
    course_id = serializers.UUIDField(source='course.id')
    currency = serializers.CharField(source='course.currency')
    coupon_code = serializers.CharField(source='coupon.code', default=None)
    gross = serializers.IntegerField(source='split.gross')
    discount_amount = serializers.IntegerField(source='split.discount_amount')
    charge_amount = serializers.IntegerField(source='split.charge_amount')


class ProviderSerializer(serializers.Serializer):
    provider = serializers.CharField()
    label = serializers.CharField()
    currencies = serializers.ListField(child=serializers.CharField())
    requires_capture = serializers.BooleanField()


class CaptureRequestSerializer(serializers.Serializer):
    order_id = serializers.CharField(max_length=255)


class PurchaseSerializer(serializers.ModelSerializer):
    course_title = serializers.CharField(source='course.title', read_only=True)
    coupon_code = serializers.SerializerMethodField()

    class Meta:
        model = Purchase
        fields = [
            'id', 'course', 'course_title', 'provider', 'status', 'status_reason',
            'amount', 'discount_amount', 'charge_amount', 'currency', 'coupon_code',
            'created_at', 'confirmed_at', 'refunded_at',
        ]
        read_only_fields = fields

    @extend_schema_field(OpenApiTypes.STR)
    def get_coupon_code(self, obj):
        return obj.coupon.code if obj.coupon_id else None


class AdminPurchaseSerializer(PurchaseSerializer):
    """Full ledger view for staff, shares and provider references included."""

    class Meta(PurchaseSerializer.Meta):
        fields = PurchaseSerializer.Meta.fields + [
            'user', 'platform_share', 'instructor_share', 'platform_fee_percent',
            'provider_session_ref', 'provider_transaction_id', 'raw_provider_status',
            'refund_id', 'updated_at',
        ]
        read_only_fields = fields


class RefundRequestSerializer(serializers.Serializer):
    amount = serializers.IntegerField(
        min_value=1,
        required=False,
        allow_null=True,
        help_text="Minor currency units; omit for a full refund",
    )


class RefundResponseSerializer(serializers.Serializer):
    refund_id = serializers.CharField()
    status = serializers.CharField()
    purchase = PurchaseSerializer()


class CouponSerializer(serializers.ModelSerializer):
    """Admin CRUD for coupons."""

    class Meta:
        model = Coupon
        fields = '__all__'
        read_only_fields = ['id', 'created_at', 'updated_at', 'used_count']

    def validate_code(self, value):
        code = Coupon.normalize_code(value)
        queryset = Coupon.objects.filter(code__iexact=code)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise serializers.ValidationError("A coupon with this code already exists.")
        return code

    def validate(self, attrs):
        discount_type = attrs.get('discount_type', getattr(self.instance, 'discount_type', None))
        value = attrs.get('discount_value', getattr(self.instance, 'discount_value', None))
        if value is not None and value <= 0:
            raise serializers.ValidationError({'discount_value': "Must be greater than zero."})
        if discount_type == Coupon.DiscountType.PERCENTAGE and value is not None and value > 100:
            raise serializers.ValidationError({'discount_value': "Percentage cannot exceed 100."})

        start = attrs.get('start_date', getattr(self.instance, 'start_date', None))
        expiry = attrs.get('expiry_date', getattr(self.instance, 'expiry_date', None))
        if start and expiry and expiry <= start:
            raise serializers.ValidationError({'expiry_date': "Must be after the start date."})
        return attrs
