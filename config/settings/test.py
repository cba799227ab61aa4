"""Settings used by the test suite."""

from .base import *  # noqa: F401,F403
from .base import get_env

DEBUG = False

# DB_ENGINE=django.db.backends.postgresql runs the suite, row-lock tests
# included, against the DB_* server from base settings.
if get_env('DB_ENGINE') is None:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': ':memory:',
        }
    }

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'booking-tests',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

PAYMENT_GATEWAY_API_KEY = ''

BOOKING = {
    'CANCELLATION': {
        'FULL_REFUND_HOURS': 48,
        'PARTIAL_REFUND_HOURS': 24,
        'PARTIAL_REFUND_PCT': 50,
        'ALLOW_FEE': False,
        'FEE_PCT': 0,
        'ALLOW_AFTER_CHECKIN': False,
    },
    'RECONCILIATION': {
        'STALE_THRESHOLD_MINUTES': 5,
        'RETRY_DELAY_MINUTES': 15,
        'BATCH_SIZE': 50,
        'MAX_ATTEMPTS': 5,
    },
    'TRANSACTIONS': {
        'MAX_RETRIES': 3,
        'BASE_DELAY_MS': 1,
        'TIMEOUT_SECONDS': 30,
    },
    'IDEMPOTENCY': {
        'LOCK_TTL': 5,
        'RESULT_TTL': 3600,
        'CACHE_ALIAS': 'default',
        'ATOMIC_RELEASE': False,
    },
    'RETENTION_DAYS': 2555,
}
