"""
Payments app URLs for the Academy course marketplace.

Stable webhook URLs (configured in each provider's dashboard):
https://yourdomain.com/api/v1/payments/webhook/card/
https://yourdomain.com/api/v1/payments/webhook/paypal/
https://yourdomain.com/api/v1/payments/webhook/regional/
https://yourdomain.com/api/v1/payments/webhook/gulf/
Do not change these paths without updating the provider configuration.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

router = DefaultRouter()
router.register(r'purchases', views.PurchaseViewSet, basename='purchase')
router.register(r'coupons', views.CouponViewSet, basename='coupon')

urlpatterns = [
    path('checkout/', views.CheckoutView.as_view(), name='checkout'),
    path('coupons/validate/', views.CouponValidateView.as_view(), name='coupon-validate'),
    path('providers/', views.ProviderListView.as_view(), name='providers'),
    path('paypal/capture/', views.PayPalCaptureView.as_view(), name='paypal-capture'),
    path('webhook/card/', views.CardWebhookView.as_view(), name='card-webhook'),
    path('webhook/paypal/', views.PayPalWebhookView.as_view(), name='paypal-webhook'),
    path('webhook/regional/', views.RegionalWebhookView.as_view(), name='regional-webhook'),
    path('webhook/gulf/', views.GulfWebhookView.as_view(), name='gulf-webhook'),
    path('', include(router.urls)),
]
