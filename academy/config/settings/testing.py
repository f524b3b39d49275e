"""
Testing settings.
"""
from .base import *  # noqa: F401,F403

DEBUG = False

# Use in-memory database for testing
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Disable password validation for testing
AUTH_PASSWORD_VALIDATORS = []

# Faster password hashing for testing
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}

# Disable email sending
EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"
CELERY_RESULT_BACKEND = "cache+memory://"

FRONTEND_URL = "https://academy.test"

PAYMENTS = {
    **PAYMENTS,
    "PLATFORM_FEE_PERCENT": 20,
    "PENDING_TIMEOUT_MINUTES": 120,
    "SUCCESS_URL": "https://academy.test/checkout/{provider}/success?purchase={purchase_id}",
    "CANCEL_URL": "https://academy.test/checkout/{provider}/cancel?purchase={purchase_id}",
    "ENABLED_PROVIDERS": ["CARD", "PAYPAL", "REGIONAL", "GULF"],
    "WEBHOOK_MAX_SIZE": 102400,
    "WEBHOOK_THROTTLE_RATE": "10000/hour",
}

STRIPE = {
    "SECRET_KEY": "sk_test_academy",
    "WEBHOOK_SECRET": "whsec_academy",
    "TIMEOUT": 5,
}

PAYPAL = {
    "CLIENT_ID": "paypal-client",
    "CLIENT_SECRET": "paypal-secret",
    "WEBHOOK_ID": "WH-ACADEMY",
    "BASE_URL": "https://api-m.sandbox.paypal.com",
    "TIMEOUT": 5,
}

PAYMOB = {
    "API_KEY": "paymob-api-key",
    "INTEGRATION_ID": "123456",
    "IFRAME_ID": "7890",
    "HMAC_SECRET": "paymob-hmac-secret",
    "BASE_URL": "https://accept.paymob.com/api",
    "TOKEN_TTL": 3000,
    "TIMEOUT": 5,
}

TAP = {
    "SECRET_KEY": "sk_test_tap",
    "WEBHOOK_SECRET": "tap-webhook-secret",
    "BASE_URL": "https://api.tap.company/v2",
    "POST_URL": "https://academy.test/api/v1/payments/webhook/gulf/",
    "TIMEOUT": 5,
}

BASIC_AUTH_PASSWORD = "docs-password"

LOGGING["loggers"]["academy"]["level"] = "WARNING"
LOGGING["loggers"]["django"]["level"] = "WARNING"

REST_FRAMEWORK = {
    **REST_FRAMEWORK,
    "DEFAULT_THROTTLE_RATES": {
        "anon": "10000/hour",
        "user": "10000/hour",
    },
}
