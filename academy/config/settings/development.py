"""
Development settings.
"""
from .base import *  # noqa: F401,F403

DEBUG = True

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "0.0.0.0"]

# Disable throttling in development
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"]["anon"] = None
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"]["user"] = None

# Security settings for development
SECURE_SSL_REDIRECT = False
SESSION_COOKIE_SECURE = False
CSRF_COOKIE_SECURE = False

CORS_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

EMAIL_BACKEND = "django.core.mail.backends.console.EmailBackend"

# Run Celery tasks inline unless a worker is explicitly configured
CELERY_TASK_ALWAYS_EAGER = env.bool("CELERY_TASK_ALWAYS_EAGER", default=True)

# Logging for development
LOGGING["loggers"]["academy"]["level"] = "DEBUG"
LOGGING["handlers"]["console"]["level"] = "DEBUG"

DATABASES["default"]["CONN_MAX_AGE"] = 0  # Disable persistent connections
