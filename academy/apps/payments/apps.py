# FILE: /academy/apps/payments/apps.py
from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments app (checkout, webhooks, refunds)."""
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'academy.apps.payments'
    verbose_name = 'Payments'
