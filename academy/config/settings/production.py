"""
Production settings for Django.

Extends base settings; every secret must come from the environment and
startup fails fast when one is missing.
"""
from django.core.exceptions import ImproperlyConfigured

from .base import *  # noqa: F401,F403

DEBUG = False

SECRET_KEY = env("SECRET_KEY")  # No default – must be set in production
SIMPLE_JWT["SIGNING_KEY"] = SECRET_KEY
ALLOWED_HOSTS = env.list("ALLOWED_HOSTS")
REDIS_URL = env("REDIS_URL")
CACHES["default"]["LOCATION"] = REDIS_URL
CELERY_BROKER_URL = env("CELERY_BROKER_URL", default=REDIS_URL)
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default=REDIS_URL)

DATABASES["default"].update({
    "NAME": env("POSTGRES_DB"),
    "USER": env("POSTGRES_USER"),
    "PASSWORD": env("POSTGRES_PASSWORD"),
    "HOST": env("POSTGRES_HOST"),
    "CONN_MAX_AGE": 600,
})
DATABASES["default"]["OPTIONS"]["sslmode"] = "require"

# HTTPS/SSL settings
SECURE_SSL_REDIRECT = env.bool("SECURE_SSL_REDIRECT", default=True)
SESSION_COOKIE_SECURE = True
CSRF_COOKIE_SECURE = True
SECURE_HSTS_SECONDS = env.int("SECURE_HSTS_SECONDS", default=31536000)
SECURE_HSTS_INCLUDE_SUBDOMAINS = True
SECURE_HSTS_PRELOAD = True
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
SECURE_REFERRER_POLICY = "strict-origin-when-cross-origin"

CORS_ALLOWED_ORIGINS = env.list("CORS_ALLOWED_ORIGINS", default=[])
CSRF_TRUSTED_ORIGINS = env.list("CSRF_TRUSTED_ORIGINS", default=[])

EMAIL_BACKEND = "django.core.mail.backends.smtp.EmailBackend"

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

CELERY_TASK_ALWAYS_EAGER = False

# ============================================================================
# PAYMENT PROVIDER CREDENTIALS – required for every enabled provider
# ============================================================================
_REQUIRED_CREDENTIALS = {
    "CARD": (STRIPE, ("SECRET_KEY", "WEBHOOK_SECRET")),
    "PAYPAL": (PAYPAL, ("CLIENT_ID", "CLIENT_SECRET", "WEBHOOK_ID")),
    "REGIONAL": (PAYMOB, ("API_KEY", "INTEGRATION_ID", "IFRAME_ID", "HMAC_SECRET")),
    "GULF": (TAP, ("SECRET_KEY",)),
}
for _provider in PAYMENTS["ENABLED_PROVIDERS"]:
    _config, _keys = _REQUIRED_CREDENTIALS[_provider]
    _missing = [key for key in _keys if not _config.get(key)]
    if _missing:
        raise ImproperlyConfigured(f"{_provider} is enabled but missing credentials: {', '.join(_missing)}")

# Logging in production: console plus a file for warnings and errors
LOGGING["handlers"]["file"] = {
    "level": "WARNING",
    "class": "logging.FileHandler",
    "filename": env("LOG_FILE", default=str(BASE_DIR / "logs" / "academy.log")),
    "formatter": "verbose",
}
LOGGING["loggers"]["django"]["handlers"] = ["console", "file"]
LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["academy"]["handlers"] = ["console", "file"]
