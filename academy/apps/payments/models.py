"""
Payments models for the Academy course marketplace.
"""
import uuid
import hashlib

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.db.models.functions import Upper
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class Provider(models.TextChoices):
    """Payment networks a checkout can be routed to."""
    CARD = "CARD", _("Credit Card")
    PAYPAL = "PAYPAL", _("PayPal")
    REGIONAL = "REGIONAL", _("Paymob (Egypt)")
    GULF = "GULF", _("Tap (Gulf)")


# ----------------------------------------------------------------------
# AUDIT LOG MODEL
# ----------------------------------------------------------------------

class GatewayEventLog(models.Model):
    """
    Immutable log of payment gateway webhook deliveries, one row per
    delivery. Redeliveries of the same body share ``payload_hash``.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    provider = models.CharField(max_length=20, choices=Provider.choices, db_index=True)
    event_type = models.CharField(max_length=100, db_index=True, blank=True, null=True)
    reference = models.CharField(max_length=255, db_index=True, blank=True, null=True)
    payload = models.JSONField(default=dict)             # Masked, parsed payload
    status_code = models.PositiveSmallIntegerField(default=200)
    error_message = models.TextField(blank=True)
    correlation_id = models.CharField(max_length=64, blank=True, db_index=True)
    payload_hash = models.CharField(max_length=64, blank=True, null=True, db_index=True, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("gateway event log")
        verbose_name_plural = _("gateway event logs")
        indexes = [
            models.Index(fields=["provider", "-created_at"], name="gatewaylog_provider_idx"),
            models.Index(fields=["reference", "provider"], name="gatewaylog_reference_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.provider} {self.event_type} {self.reference or ''}"

    @staticmethod
    def hash_payload(raw_payload):
        if isinstance(raw_payload, str):
            raw_payload = raw_payload.encode()
        return hashlib.sha256(raw_payload or b'').hexdigest()


# ----------------------------------------------------------------------
# COUPON MODEL
# ----------------------------------------------------------------------

class Coupon(models.Model):
    """
    Discount coupon. Owned by the catalogue admin; the payment core only
    reads it and increments ``used_count`` when a purchase completes.
    """

    class DiscountType(models.TextChoices):
        PERCENTAGE = "PERCENTAGE", _("Percentage")
        FIXED = "FIXED", _("Fixed Amount")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Coupon details
    code = models.CharField(_("code"), max_length=50, unique=True, db_index=True)
    description = models.TextField(_("description"), blank=True)

    discount_type = models.CharField(
        _("discount type"),
        max_length=10,
        choices=DiscountType.choices,
        default=DiscountType.PERCENTAGE
    )
    discount_value = models.DecimalField(
        _("discount value"),
        max_digits=12,
        decimal_places=2,
        help_text=_("Percent for PERCENTAGE coupons, minor currency units for FIXED coupons")
    )
    max_discount = models.PositiveBigIntegerField(
        _("max discount"),
        null=True,
        blank=True,
        help_text=_("Cap for percentage discounts, in minor currency units")
    )
    min_purchase = models.PositiveBigIntegerField(
        _("minimum purchase"),
        null=True,
        blank=True,
        help_text=_("Minimum gross amount required, in minor currency units")
    )

    # Validity
    start_date = models.DateTimeField(_("start date"), default=timezone.now)
    expiry_date = models.DateTimeField(_("expiry date"), null=True, blank=True)

    # Usage limits
    max_uses = models.PositiveIntegerField(
        _("max uses"),
        null=True,
        blank=True,
        help_text=_("Maximum number of completed purchases that may use this coupon")
    )
    used_count = models.PositiveIntegerField(_("used count"), default=0)

    # Applicability
    course = models.ForeignKey(
        "courses.Course",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="coupons",
        help_text=_("Leave empty to apply to all courses")
    )

    is_active = models.BooleanField(_("active"), default=True)

    created_at = models.DateTimeField(_("created at"), auto_now_add=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        verbose_name = _("coupon")
        verbose_name_plural = _("coupons")
        indexes = [
            models.Index(fields=["code", "is_active"], name="coupon_code_active_idx"),
            models.Index(fields=["start_date", "expiry_date"], name="coupon_validity_idx"),
        ]
        constraints = [
            models.UniqueConstraint(Upper("code"), name="unique_coupon_code_ci"),
            models.CheckConstraint(
                condition=Q(max_uses__isnull=True) | Q(used_count__lte=models.F("max_uses")),
                name="coupon_used_count_within_max_uses",
            ),
        ]

    def __str__(self):
        return f"Coupon: {self.code}"

    def save(self, *args, **kwargs):
        if self.code:
            self.code = self.code.strip().upper()
        super().save(*args, **kwargs)

    @classmethod
    def normalize_code(cls, code):
        return (code or "").strip().upper()

    @property
    def has_uses_left(self):
        return self.max_uses is None or self.used_count < self.max_uses


# ----------------------------------------------------------------------
# PURCHASE MODEL
# ----------------------------------------------------------------------

class Purchase(models.Model):
    """
    One checkout attempt for one course. Monetary fields are integer minor
    currency units. Rows are never deleted; refunds are a terminal state.
    """

    class Status(models.TextChoices):
        PENDING = "PENDING", _("Pending")
        COMPLETED = "COMPLETED", _("Completed")
        FAILED = "FAILED", _("Failed")
        REFUNDED = "REFUNDED", _("Refunded")

    # Allowed state transitions
    STATUS_TRANSITIONS = {
        Status.PENDING: [Status.COMPLETED, Status.FAILED],
        Status.COMPLETED: [Status.REFUNDED],
        Status.FAILED: [],
        Status.REFUNDED: [],
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="purchases"
    )
    course = models.ForeignKey(
        "courses.Course",
        on_delete=models.PROTECT,
        related_name="purchases"
    )

    provider = models.CharField(_("provider"), max_length=20, choices=Provider.choices)
    provider_session_ref = models.CharField(
        _("provider session reference"),
        max_length=255,
        blank=True,
        db_index=True,
        help_text=_("Checkout session / order / charge id returned at checkout time")
    )
    # NULL until confirmed; unique per provider (idempotency key)
    provider_transaction_id = models.CharField(
        _("provider transaction ID"),
        max_length=255,
        null=True,
        blank=True
    )

    # Money (minor units)
    amount = models.PositiveBigIntegerField(_("gross amount"))
    currency = models.CharField(_("currency"), max_length=3)
    discount_amount = models.PositiveBigIntegerField(_("discount amount"), default=0)
    charge_amount = models.PositiveBigIntegerField(_("charge amount"))
    platform_share = models.PositiveBigIntegerField(_("platform share"))
    instructor_share = models.PositiveBigIntegerField(_("instructor share"))
    platform_fee_percent = models.DecimalField(_("platform fee percent"), max_digits=5, decimal_places=2)

    coupon = models.ForeignKey(
        Coupon,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="purchases"
    )

    status = models.CharField(
        _("status"),
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING
    )
    status_reason = models.CharField(_("status reason"), max_length=255, blank=True)

    # Provider's own view of the money movement
    raw_provider_status = models.CharField(_("raw provider status"), max_length=100, blank=True)
    payload_hash = models.CharField(_("payload hash"), max_length=64, blank=True)
    refund_id = models.CharField(_("refund ID"), max_length=255, blank=True)

    metadata = models.JSONField(_("metadata"), default=dict, blank=True)

    created_at = models.DateTimeField(_("created at"), auto_now_add=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)
    confirmed_at = models.DateTimeField(_("confirmed at"), null=True, blank=True)
    refunded_at = models.DateTimeField(_("refunded at"), null=True, blank=True)

    class Meta:
        verbose_name = _("purchase")
        verbose_name_plural = _("purchases")
        indexes = [
            models.Index(fields=["user", "status"], name="purchase_user_status_idx"),
            models.Index(fields=["status", "created_at"], name="purchase_status_created_idx"),  # For the pending sweeper
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "provider_transaction_id"],
                condition=Q(provider_transaction_id__isnull=False),
                name="unique_provider_transaction",
            ),
        ]
        ordering = ["-created_at"]

    def __str__(self):
        return f"Purchase {self.id} - {self.amount} {self.currency} ({self.status})"

    @property
    def is_pending(self):
        return self.status == self.Status.PENDING

    @property
    def can_be_refunded(self):
        return self.status == self.Status.COMPLETED and bool(self.provider_transaction_id)

    @property
    def is_free(self):
        return self.charge_amount == 0

    @property
    def is_reconciled(self):
        """Gross equals discount plus both shares."""
        return self.amount == self.discount_amount + self.platform_share + self.instructor_share
