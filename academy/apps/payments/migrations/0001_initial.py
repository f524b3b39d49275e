import uuid

import django.db.models.deletion
import django.db.models.functions.text
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

PROVIDER_CHOICES = [
    ("CARD", "Credit Card"),
    ("PAYPAL", "PayPal"),
    ("REGIONAL", "Paymob (Egypt)"),
    ("GULF", "Tap (Gulf)"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("courses", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="GatewayEventLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, db_index=True, max_length=20)),
                ("event_type", models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ("reference", models.CharField(blank=True, db_index=True, max_length=255, null=True)),
                ("payload", models.JSONField(default=dict)),
                ("status_code", models.PositiveSmallIntegerField(default=200)),
                ("error_message", models.TextField(blank=True)),
                ("correlation_id", models.CharField(blank=True, db_index=True, max_length=64)),
                ("payload_hash", models.CharField(blank=True, editable=False, max_length=64, null=True, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "verbose_name": "gateway event log",
                "verbose_name_plural": "gateway event logs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["provider", "-created_at"], name="gatewaylog_provider_idx"),
                    models.Index(fields=["reference", "provider"], name="gatewaylog_reference_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Coupon",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(db_index=True, max_length=50, unique=True, verbose_name="code")),
                ("description", models.TextField(blank=True, verbose_name="description")),
                ("discount_type", models.CharField(choices=[("PERCENTAGE", "Percentage"), ("FIXED", "Fixed Amount")], default="PERCENTAGE", max_length=10, verbose_name="discount type")),
                ("discount_value", models.DecimalField(decimal_places=2, help_text="Percent for PERCENTAGE coupons, minor currency units for FIXED coupons", max_digits=12, verbose_name="discount value")),
                ("max_discount", models.PositiveBigIntegerField(blank=True, help_text="Cap for percentage discounts, in minor currency units", null=True, verbose_name="max discount")),
                ("min_purchase", models.PositiveBigIntegerField(blank=True, help_text="Minimum gross amount required, in minor currency units", null=True, verbose_name="minimum purchase")),
                ("start_date", models.DateTimeField(default=django.utils.timezone.now, verbose_name="start date")),
                ("expiry_date", models.DateTimeField(blank=True, null=True, verbose_name="expiry date")),
                ("max_uses", models.PositiveIntegerField(blank=True, help_text="Maximum number of completed purchases that may use this coupon", null=True, verbose_name="max uses")),
                ("used_count", models.PositiveIntegerField(default=0, verbose_name="used count")),
                ("is_active", models.BooleanField(default=True, verbose_name="active")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
                ("course", models.ForeignKey(blank=True, help_text="Leave empty to apply to all courses", null=True, on_delete=django.db.models.deletion.CASCADE, related_name="coupons", to="courses.course")),
            ],
            options={
                "verbose_name": "coupon",
                "verbose_name_plural": "coupons",
                "indexes": [
                    models.Index(fields=["code", "is_active"], name="coupon_code_active_idx"),
                    models.Index(fields=["start_date", "expiry_date"], name="coupon_validity_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(django.db.models.functions.text.Upper("code"), name="unique_coupon_code_ci"),
                    models.CheckConstraint(
                        condition=models.Q(("max_uses__isnull", True), ("used_count__lte", models.F("max_uses")), _connector="OR"),
                        name="coupon_used_count_within_max_uses",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Purchase",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20, verbose_name="provider")),
                ("provider_session_ref", models.CharField(blank=True, db_index=True, help_text="Checkout session / order / charge id returned at checkout time", max_length=255, verbose_name="provider session reference")),
                ("provider_transaction_id", models.CharField(blank=True, max_length=255, null=True, verbose_name="provider transaction ID")),
                ("amount", models.PositiveBigIntegerField(verbose_name="gross amount")),
                ("currency", models.CharField(max_length=3, verbose_name="currency")),
                ("discount_amount", models.PositiveBigIntegerField(default=0, verbose_name="discount amount")),
                ("charge_amount", models.PositiveBigIntegerField(verbose_name="charge amount")),
                ("platform_share", models.PositiveBigIntegerField(verbose_name="platform share")),
                ("instructor_share", models.PositiveBigIntegerField(verbose_name="instructor share")),
                ("platform_fee_percent", models.DecimalField(decimal_places=2, max_digits=5, verbose_name="platform fee percent")),
                ("status", models.CharField(choices=[("PENDING", "Pending"), ("COMPLETED", "Completed"), ("FAILED", "Failed"), ("REFUNDED", "Refunded")], default="PENDING", max_length=20, verbose_name="status")),
                ("status_reason", models.CharField(blank=True, max_length=255, verbose_name="status reason")),
                ("raw_provider_status", models.CharField(blank=True, max_length=100, verbose_name="raw provider status")),
                ("payload_hash", models.CharField(blank=True, max_length=64, verbose_name="payload hash")),
                ("refund_id", models.CharField(blank=True, max_length=255, verbose_name="refund ID")),
                ("metadata", models.JSONField(blank=True, default=dict, verbose_name="metadata")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
                ("confirmed_at", models.DateTimeField(blank=True, null=True, verbose_name="confirmed at")),
                ("refunded_at", models.DateTimeField(blank=True, null=True, verbose_name="refunded at")),
                ("coupon", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="purchases", to="payments.coupon")),
                ("course", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="purchases", to="courses.course")),
                ("user", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="purchases", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "purchase",
                "verbose_name_plural": "purchases",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "status"], name="purchase_user_status_idx"),
                    models.Index(fields=["status", "created_at"], name="purchase_status_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("provider_transaction_id__isnull", False)),
                        fields=("provider", "provider_transaction_id"),
                        name="unique_provider_transaction",
                    ),
                ],
            },
        ),
    ]
