# FILE: /academy/apps/payments/admin.py
from django.contrib import admin
from django.utils.html import format_html

from .models import Coupon, GatewayEventLog, Purchase


# ----------------------------------------------------------------------
# Purchase Admin – read-only ledger
# ----------------------------------------------------------------------
@admin.register(Purchase)
class PurchaseAdmin(admin.ModelAdmin):
    """Purchases change state only through the ledger; the admin is a viewer."""
    list_display = (
        'id', 'user', 'course', 'provider', 'charge_amount', 'currency',
        'status_badge', 'reconciled', 'created_at', 'confirmed_at',
    )
    list_filter = ('status', 'provider', 'currency')
    search_fields = ('user__email', 'course__title', 'provider_session_ref', 'provider_transaction_id')
    raw_id_fields = ('user', 'course', 'coupon')
    date_hierarchy = 'created_at'
    ordering = ('-created_at',)

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def status_badge(self, obj):
        colors = {
            Purchase.Status.PENDING: '#b58900',
            Purchase.Status.COMPLETED: '#2e7d32',
            Purchase.Status.FAILED: '#c62828',
            Purchase.Status.REFUNDED: '#546e7a',
        }
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            colors.get(obj.status, '#000'),
            obj.get_status_display(),
        )
    status_badge.short_description = 'Status'
    status_badge.admin_order_field = 'status'

    def reconciled(self, obj):
        return obj.is_reconciled
    reconciled.boolean = True
    reconciled.short_description = 'Reconciled'


# ----------------------------------------------------------------------
# Coupon Admin
# ----------------------------------------------------------------------
@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = (
        'code', 'discount_type', 'discount_value', 'course', 'used_count', 'max_uses',
        'start_date', 'expiry_date', 'is_active',
    )
    list_filter = ('is_active', 'discount_type')
    search_fields = ('code', 'description')
    raw_id_fields = ('course',)
    readonly_fields = ('used_count', 'created_at', 'updated_at')


# ----------------------------------------------------------------------
# Gateway Event Log Admin – immutable
# ----------------------------------------------------------------------
@admin.register(GatewayEventLog)
class GatewayEventLogAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'provider', 'event_type', 'reference', 'status_code', 'correlation_id')
    list_filter = ('provider', 'status_code')
    search_fields = ('reference', 'correlation_id', 'event_type')
    ordering = ('-created_at',)

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
