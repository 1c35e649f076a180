"""Test settings: in-memory SQLite, no retry delays, eager Celery."""

from .base import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PAYMENT_API_KEY = ''
REFUND_BACKOFF_SECONDS = 0
ESCROW_RELEASE_HOLD_DAYS = 0

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'
