"""Development settings for the booking backend.

This module extends the base settings with development specific
configuration, such as enabling debug, a local SQLite database, an
in-process cache and the console email backend. Do not use these settings
in production!
"""

from .base import *  # noqa: F401,F403
from .base import BASE_DIR, get_env

# Enable debug mode for development
DEBUG = True

# Allow all hosts in development
ALLOWED_HOSTS = ['*']

if get_env('DB_ENGINE') is None:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

# Without CACHE_URL the idempotency locks only hold within one process.
if get_env('CACHE_URL') is None:
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'booking-dev',
        }
    }
    BOOKING['IDEMPOTENCY']['ATOMIC_RELEASE'] = False  # noqa: F405

# Use console email backend during development
EMAIL_BACKEND = 'django.core.mail.backends.console.EmailBackend'
