"""Test settings.

In-memory SQLite, eager Celery, locmem email and the process-local
payment and PMS doubles. Used by pytest through pytest-django.
"""

from .base import *  # noqa: F401,F403

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

BOOKING_CONFIRMATION_POLICY = 'strict'
BOOKING_CANCELLATION_WINDOW_HOURS = 24
PAYMENT_COORDINATOR = 'memory'
PMS_SYNC_BACKEND = 'memory'

LOGGING['root']['level'] = 'CRITICAL'  # noqa: F405
LOGGING['loggers']['apps']['level'] = 'CRITICAL'  # noqa: F405
LOGGING['loggers']['shared']['level'] = 'CRITICAL'  # noqa: F405
LOGGING['loggers']['apps.bookings.infrastructure']['level'] = 'CRITICAL'  # noqa: F405
