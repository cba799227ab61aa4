"""Base settings for all environments.

This configuration file defines the common settings used in development,
test and production environments. It follows Django's standard
configuration structure and wires in Django Rest Framework, Celery,
django-redis, django-prometheus and structlog. Values come from environment
variables (optionally loaded from a `.env` file); environment specific
overrides live in `dev.py`, `test.py` and `prod.py`.

Booking domain configuration lives in the `BOOKING` dict below and is read
through `shared.conf.booking_settings()`.
"""

import os
from pathlib import Path

import structlog
from django.core.exceptions import ImproperlyConfigured
from dotenv import load_dotenv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

load_dotenv(BASE_DIR / '.env')


def get_env(var_name: str, default=None, required: bool = False):
    value = os.environ.get(var_name, default)
    if required and value in (None, ''):
        raise ImproperlyConfigured(f'Missing required environment variable: {var_name}')
    return value


def get_bool(var_name: str, default: str = 'false') -> bool:
    return str(get_env(var_name, default)).lower() == 'true'


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = get_env('DJANGO_SECRET_KEY', 'replace-me-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = False

ALLOWED_HOSTS: list[str] = get_env('DJANGO_ALLOWED_HOSTS', '*').split(',')

# Application definition

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    # Third‑party apps
    'django_prometheus',
    'rest_framework',
    'django_celery_beat',
    # Domain apps
    'apps.users',
    'apps.rooms',
    'apps.bookings',
]

MIDDLEWARE = [
    'django_prometheus.middleware.PrometheusBeforeMiddleware',
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'django_prometheus.middleware.PrometheusAfterMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
# PostgreSQL is the production store (row locks, isolation levels,
# statement timeouts). SQLite works for local development only.

DATABASES = {
    'default': {
        'ENGINE': get_env('DB_ENGINE', 'django_prometheus.db.backends.postgresql'),
        'NAME': get_env('DB_NAME', 'booking'),
        'USER': get_env('DB_USER', 'booking'),
        'PASSWORD': get_env('DB_PASSWORD', ''),
        'HOST': get_env('DB_HOST', 'localhost'),
        'PORT': get_env('DB_PORT', '5432'),
    }
}

# Password validation

AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]

# Internationalization

LANGUAGE_CODE = 'en-us'

TIME_ZONE = get_env('DJANGO_TIME_ZONE', 'UTC')

USE_I18N = True

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# Email defaults
DEFAULT_FROM_EMAIL = get_env('DEFAULT_FROM_EMAIL', 'no-reply@booking.local')

# Custom user model
AUTH_USER_MODEL = 'users.CustomUser'

# Django Rest Framework
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
        'rest_framework.authentication.BasicAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticatedOrReadOnly',
    ],
    'EXCEPTION_HANDLER': 'shared.infrastructure.exception_handler.domain_exception_handler',
}

# Cache: Redis in every real deployment, the idempotency locks depend on it
# being shared between worker processes.
REDIS_URL = get_env('REDIS_URL', 'redis://localhost:6379')
CACHE_URL = get_env('CACHE_URL', f'{REDIS_URL}/2')

CACHES = {
    'default': {
        'BACKEND': 'django_redis.cache.RedisCache',
        'LOCATION': CACHE_URL,
        'OPTIONS': {
            'CLIENT_CLASS': 'django_redis.client.DefaultClient',
        },
    }
}

# Celery configuration
CELERY_BROKER_URL = get_env('CELERY_BROKER_URL', f'{REDIS_URL}/0')
CELERY_RESULT_BACKEND = get_env('CELERY_RESULT_BACKEND', f'{REDIS_URL}/1')
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_RESULT_SERIALIZER = 'json'
CELERY_BEAT_SCHEDULER = 'django_celery_beat.schedulers:DatabaseScheduler'

# Payment gateway
PAYMENT_GATEWAY_BASE_URL = get_env('PAYMENT_GATEWAY_BASE_URL', 'https://api.payments.example.com/v1')
PAYMENT_GATEWAY_API_KEY = get_env('PAYMENT_GATEWAY_API_KEY', '')
PAYMENT_GATEWAY_TIMEOUT = float(get_env('PAYMENT_GATEWAY_TIMEOUT', '30'))

# Booking domain
BOOKING = {
    'CANCELLATION': {
        'FULL_REFUND_HOURS': int(get_env('BOOKING_FULL_REFUND_HOURS', '48')),
        'PARTIAL_REFUND_HOURS': int(get_env('BOOKING_PARTIAL_REFUND_HOURS', '24')),
        'PARTIAL_REFUND_PCT': int(get_env('BOOKING_PARTIAL_REFUND_PCT', '50')),
        'ALLOW_FEE': get_bool('BOOKING_ALLOW_CANCELLATION_FEE'),
        'FEE_PCT': int(get_env('BOOKING_CANCELLATION_FEE_PCT', '0')),
        'ALLOW_AFTER_CHECKIN': get_bool('BOOKING_ALLOW_CANCEL_AFTER_CHECKIN'),
    },
    'RECONCILIATION': {
        'STALE_THRESHOLD_MINUTES': int(get_env('BOOKING_RECONCILE_STALE_MINUTES', '5')),
        'RETRY_DELAY_MINUTES': int(get_env('BOOKING_RECONCILE_RETRY_DELAY_MINUTES', '15')),
        'BATCH_SIZE': int(get_env('BOOKING_RECONCILE_BATCH_SIZE', '50')),
        'MAX_ATTEMPTS': int(get_env('BOOKING_RECONCILE_MAX_ATTEMPTS', '5')),
    },
    'TRANSACTIONS': {
        'MAX_RETRIES': int(get_env('DB_TRANSACTION_MAX_RETRIES', '3')),
        'BASE_DELAY_MS': int(get_env('DB_TRANSACTION_BASE_DELAY_MS', '100')),
        'TIMEOUT_SECONDS': int(get_env('DB_TRANSACTION_TIMEOUT', '30')),
    },
    'IDEMPOTENCY': {
        'LOCK_TTL': int(get_env('IDEMPOTENCY_LOCK_TTL', '60')),
        'RESULT_TTL': int(get_env('IDEMPOTENCY_RESULT_TTL', '86400')),
        'CACHE_ALIAS': 'default',
        # Owner-checked lock release through a Lua script; needs django-redis.
        'ATOMIC_RELEASE': True,
    },
    'RETENTION_DAYS': int(get_env('BOOKING_RETENTION_DAYS', '2555')),
}

# Logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

LOG_LEVEL = get_env('LOG_LEVEL', 'INFO')

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "structlog.stdlib.ProcessorFormatter",
            "processor": structlog.processors.JSONRenderer(),
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        }
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "shared": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "celery": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
}

PROMETHEUS_EXPORT_MIGRATIONS = False
