"""
Django settings for the Academy course marketplace.
Shared by every environment; secrets come from the environment via django-environ.
"""
from pathlib import Path
from datetime import timedelta
import environ

# Build paths
BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent
APPS_DIR = BASE_DIR / "academy" / "apps"

# Environment setup
env = environ.Env()
environ.Env.read_env(BASE_DIR / ".env")

# Debug mode
DEBUG = env.bool("DEBUG", default=False)

# Production overrides these with required values (see production.py)
SECRET_KEY = env("SECRET_KEY", default="django-insecure-development-key-change-in-production")
ALLOWED_HOSTS = env.list("ALLOWED_HOSTS", default=["localhost", "127.0.0.1"])
REDIS_URL = env("REDIS_URL", default="redis://localhost:6379/1")

# ============================================================================
# APPLICATION DEFINITION
# ============================================================================
INSTALLED_APPS = [
    # ----- Custom apps (must be first for User model) -----
    "academy.apps.accounts",
    "academy.apps.courses",
    "academy.apps.payments",

    # ----- Django contrib apps -----
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # ----- Third‑party apps -----
    "rest_framework",
    "rest_framework_simplejwt",
    "corsheaders",
    "drf_spectacular",
    "django_filters",
    "django_celery_beat",
]

MIDDLEWARE = [
    # ----- Custom BasicAuth for API docs (placed first to block early) -----
    "academy.core.middleware.BasicAuthDocsMiddleware",
    "academy.core.middleware.CorrelationIdMiddleware",

    # ----- Security & Performance (must be early) -----
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",               # Must be before CommonMiddleware

    # ----- Django core (required for admin & sessions) -----
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

# URL configuration
ROOT_URLCONF = "academy.config.urls"

# Templates
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [BASE_DIR / "academy" / "templates"],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

# WSGI/ASGI
WSGI_APPLICATION = "academy.config.wsgi.application"
ASGI_APPLICATION = "academy.config.asgi.application"

# ============================================================================
# DATABASE – PostgreSQL; credentials required in production.
# ============================================================================
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": env("POSTGRES_DB", default="academy"),
        "USER": env("POSTGRES_USER", default="postgres"),
        "PASSWORD": env("POSTGRES_PASSWORD", default="postgres"),
        "HOST": env("POSTGRES_HOST", default="localhost"),
        "PORT": env("POSTGRES_PORT", default="5432"),
        "CONN_MAX_AGE": 600,
        "OPTIONS": {"sslmode": "prefer"},
    }
}

# ============================================================================
# CACHES – uses REDIS_URL
# ============================================================================
CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": REDIS_URL,
        "OPTIONS": {
            "CLIENT_CLASS": "django_redis.client.DefaultClient",
            "CONNECTION_POOL_KWARGS": {"max_connections": 100, "retry_on_timeout": True},
            "IGNORE_EXCEPTIONS": env.bool("CACHE_IGNORE_EXCEPTIONS", default=False),
            "SOCKET_CONNECT_TIMEOUT": 5,
            "SOCKET_TIMEOUT": 5,
        },
        "KEY_PREFIX": "academy",
        "TIMEOUT": 60 * 15,
    }
}

# ============================================================================
# CELERY CONFIGURATION
# ============================================================================
CELERY_BROKER_URL = env("CELERY_BROKER_URL", default=REDIS_URL)
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default=REDIS_URL)
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = "UTC"
CELERY_ENABLE_UTC = True
CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"
CELERY_TASK_ALWAYS_EAGER = env.bool("CELERY_TASK_ALWAYS_EAGER", default=DEBUG)
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_CONNECTION_RETRY_ON_STARTUP = True
CELERY_TASK_DEFAULT_QUEUE = "default"
CELERY_WORKER_PREFETCH_MULTIPLIER = env.int("CELERY_WORKER_PREFETCH_MULTIPLIER", default=1)
CELERY_WORKER_MAX_TASKS_PER_CHILD = env.int("CELERY_WORKER_MAX_TASKS_PER_CHILD", default=1000)

# ============================================================================
# AUTHENTICATION
# ============================================================================
AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator", "OPTIONS": {"min_length": 12}},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

AUTH_USER_MODEL = "accounts.User"

# ============================================================================
# INTERNATIONALIZATION
# ============================================================================
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# ============================================================================
# STATIC FILES
# ============================================================================
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ============================================================================
# REST FRAMEWORK & JWT
# ============================================================================
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.FormParser",
    ],
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
        "rest_framework.filters.OrderingFilter",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "anon": "100/hour",
        "user": "1000/hour",
    },
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "academy.core.exceptions.custom_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=15),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=1),
    "ROTATE_REFRESH_TOKENS": True,
    "UPDATE_LAST_LOGIN": True,
    "ALGORITHM": "HS256",
    "SIGNING_KEY": SECRET_KEY,
    "AUTH_HEADER_TYPES": ("Bearer",),
    "USER_ID_FIELD": "id",
    "USER_ID_CLAIM": "user_id",
}

# ============================================================================
# CORS
# ============================================================================
CORS_ALLOWED_ORIGINS = env.list("CORS_ALLOWED_ORIGINS", default=[
    "http://localhost:3000",
    "http://127.0.0.1:3000",
] if DEBUG else [])
CORS_ALLOW_CREDENTIALS = True

# ============================================================================
# SECURITY
# ============================================================================
SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = "DENY"
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SECURE = not DEBUG
CSRF_COOKIE_SECURE = not DEBUG

# ============================================================================
# EMAIL CONFIGURATION
# ============================================================================
EMAIL_BACKEND = env(
    "EMAIL_BACKEND",
    default="django.core.mail.backends.console.EmailBackend" if DEBUG else "django.core.mail.backends.smtp.EmailBackend"
)
EMAIL_HOST = env("EMAIL_HOST", default="smtp.gmail.com")
EMAIL_PORT = env.int("EMAIL_PORT", default=587)
EMAIL_USE_TLS = env.bool("EMAIL_USE_TLS", default=True)
EMAIL_HOST_USER = env("EMAIL_HOST_USER", default="")
EMAIL_HOST_PASSWORD = env("EMAIL_HOST_PASSWORD", default="")
DEFAULT_FROM_EMAIL = env("DEFAULT_FROM_EMAIL", default="noreply@academy.local")
EMAIL_TIMEOUT = 30
SUPPORT_EMAIL = env("SUPPORT_EMAIL", default="support@academy.local")

# ============================================================================
# FRONTEND URLS
# ============================================================================
FRONTEND_URL = env("FRONTEND_URL", default="http://localhost:3000")

# ============================================================================
# PAYMENTS
# ============================================================================
PAYMENTS = {
    # Platform cut of every completed sale, in percent
    "PLATFORM_FEE_PERCENT": env.float("PLATFORM_FEE_PERCENT", default=20.0),
    # PENDING purchases older than this are failed by the beat sweeper
    "PENDING_TIMEOUT_MINUTES": env.int("PENDING_TIMEOUT_MINUTES", default=120),
    # Where providers send the buyer back; {purchase_id} and {provider} are filled in
    "SUCCESS_URL": env(
        "PAYMENT_SUCCESS_URL",
        default=f"{FRONTEND_URL}/checkout/{{provider}}/success?purchase={{purchase_id}}",
    ),
    "CANCEL_URL": env(
        "PAYMENT_CANCEL_URL",
        default=f"{FRONTEND_URL}/checkout/{{provider}}/cancel?purchase={{purchase_id}}",
    ),
    "ENABLED_PROVIDERS": env.list("PAYMENT_PROVIDERS", default=["CARD", "PAYPAL", "REGIONAL", "GULF"]),
    "WEBHOOK_MAX_SIZE": env.int("PAYMENT_WEBHOOK_MAX_SIZE", default=102400),  # 100KB
    "WEBHOOK_THROTTLE_RATE": env("PAYMENT_WEBHOOK_THROTTLE_RATE", default="600/hour"),
}

# Card network (Stripe Checkout)
STRIPE = {
    "SECRET_KEY": env("STRIPE_SECRET_KEY", default=None),
    "WEBHOOK_SECRET": env("STRIPE_WEBHOOK_SECRET", default=None),
    "TIMEOUT": env.int("STRIPE_TIMEOUT", default=10),
}

# PayPal Orders v2
PAYPAL_MODE = env("PAYPAL_MODE", default="sandbox")
PAYPAL = {
    "CLIENT_ID": env("PAYPAL_CLIENT_ID", default=None),
    "CLIENT_SECRET": env("PAYPAL_CLIENT_SECRET", default=None),
    "WEBHOOK_ID": env("PAYPAL_WEBHOOK_ID", default=None),
    "BASE_URL": (
        "https://api-m.paypal.com" if PAYPAL_MODE == "live" else "https://api-m.sandbox.paypal.com"
    ),
    "TIMEOUT": env.int("PAYPAL_TIMEOUT", default=10),
}

# Regional network (Paymob Accept, Egypt)
PAYMOB = {
    "API_KEY": env("PAYMOB_API_KEY", default=None),
    "INTEGRATION_ID": env("PAYMOB_INTEGRATION_ID", default=None),
    "IFRAME_ID": env("PAYMOB_IFRAME_ID", default=None),
    "HMAC_SECRET": env("PAYMOB_HMAC_SECRET", default=None),
    "BASE_URL": env("PAYMOB_BASE_URL", default="https://accept.paymob.com/api"),
    "TOKEN_TTL": env.int("PAYMOB_TOKEN_TTL", default=3000),
    "TIMEOUT": env.int("PAYMOB_TIMEOUT", default=10),
}

# Gulf network (Tap Payments); Tap uses the same host for test and live keys
TAP = {
    "SECRET_KEY": env("TAP_SECRET_KEY", default=None),
    "WEBHOOK_SECRET": env("TAP_WEBHOOK_SECRET", default=None),
    "BASE_URL": env("TAP_BASE_URL", default="https://api.tap.company/v2"),
    "POST_URL": env("TAP_POST_URL", default=None),
    "TIMEOUT": env.int("TAP_TIMEOUT", default=10),
}

# ============================================================================
# BASIC AUTHENTICATION FOR API DOCS
# ============================================================================
BASIC_AUTH_USERNAME = env("DOCS_USERNAME", default="docs")
BASIC_AUTH_PASSWORD = env("DOCS_PASSWORD", default="")
BASIC_AUTH_URLS = (
    "/api/schema/",
)

# ============================================================================
# LOGGING
# ============================================================================
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {"format": "{levelname} {message}", "style": "{"},
    },
    "handlers": {
        "console": {
            "level": "INFO",
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": True,
        },
        "academy": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "django_redis": {
            "handlers": ["console"],
            "level": "WARNING",
            "propagate": False,
        },
    },
}

# ============================================================================
# DRF SPECTACULAR
# ============================================================================
SPECTACULAR_SETTINGS = {
    "TITLE": "Academy Payments API",
    "DESCRIPTION": "Course checkout, payment webhooks, coupons and refunds",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "COMPONENT_SPLIT_REQUEST": True,
    "SCHEMA_PATH_PREFIX": "/api/",
}
