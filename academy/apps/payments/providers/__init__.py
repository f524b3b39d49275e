# FILE: /academy/apps/payments/providers/__init__.py
"""
Adapter registry keyed by ``Provider``.

Adding a network means writing one adapter class and listing it here;
nothing else in the payment flow branches on the provider.
"""
from academy.core.exceptions import CheckoutNotAllowed
from ..models import Provider
from .base import ProviderAdapter
from .card import CardAdapter
from .gulf import GulfAdapter
from .paypal import PayPalAdapter
from .regional import RegionalAdapter

ADAPTERS = {
    Provider.CARD: CardAdapter,
    Provider.PAYPAL: PayPalAdapter,
    Provider.REGIONAL: RegionalAdapter,
    Provider.GULF: GulfAdapter,
}


def get_adapter(provider) -> ProviderAdapter:
    """Build the adapter for ``provider`` from current settings."""
    key = str(provider or '').upper()
    try:
        adapter_class = ADAPTERS[Provider(key)]
    except (KeyError, ValueError):
        raise CheckoutNotAllowed(detail=f"Unknown payment provider: {provider}", reason='unknown_provider')
    return adapter_class()


def enabled_adapters():
    adapters = (adapter_class() for adapter_class in ADAPTERS.values())
    return [adapter for adapter in adapters if adapter.is_enabled]


__all__ = ['ADAPTERS', 'get_adapter', 'enabled_adapters']
