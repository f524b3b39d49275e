# FILE: /academy/apps/accounts/apps.py
from django.apps import AppConfig


class AccountsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'academy.apps.accounts'
    verbose_name = 'Accounts'
