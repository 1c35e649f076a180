"""Base settings for all environments.

This configuration file defines the common settings used by the
reservation and escrow engine in every environment. The engine has no
HTTP surface of its own; Django provides the ORM, transactions and
settings, Celery runs the periodic jobs. Environment-specific settings
are overridden in `dev.py`, `prod.py` or `test.py`.
"""

import os
from pathlib import Path

import structlog

# Optionally load .env file if using python-dotenv
from dotenv import load_dotenv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

load_dotenv(BASE_DIR / ".env")

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'replace-me-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = False

ALLOWED_HOSTS: list[str] = os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',')

# Application definition

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    # Domain apps
    'apps.bookings',
    'apps.escrow',
    'apps.disputes',
    'apps.payments',
]

# Database
# https://docs.djangoproject.com/en/5.1/ref/settings/#databases

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', BASE_DIR / 'db.sqlite3'),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

# Internationalization

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Reservation engine

DEFAULT_CURRENCY = os.environ.get('DEFAULT_CURRENCY', 'USD')

# Days between completion and escrow payout; 0 releases on completion
ESCROW_RELEASE_HOLD_DAYS = int(os.environ.get('ESCROW_RELEASE_HOLD_DAYS', 0))

# Share of the remaining escrow refunded when a confirmed booking is cancelled
CANCELLATION_REFUND_BEFORE_START = os.environ.get('CANCELLATION_REFUND_BEFORE_START', '1.0')
CANCELLATION_REFUND_AFTER_START = os.environ.get('CANCELLATION_REFUND_AFTER_START', '0.0')

# Refund retries on transient payment failures
REFUND_MAX_ATTEMPTS = int(os.environ.get('REFUND_MAX_ATTEMPTS', 3))
REFUND_BACKOFF_SECONDS = float(os.environ.get('REFUND_BACKOFF_SECONDS', 0.5))

# Payment processor (sandbox gateway is used when PAYMENT_API_KEY is empty)
PAYMENT_API_BASE_URL = os.environ.get('PAYMENT_API_BASE_URL', 'https://api.payments.example.com/v1/')
PAYMENT_API_KEY = os.environ.get('PAYMENT_API_KEY', '')
PAYMENT_API_TIMEOUT = float(os.environ.get('PAYMENT_API_TIMEOUT', 10))

# Celery configuration (Broker and Result backend handled in environment)
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_TASK_ALWAYS_EAGER = os.environ.get('CELERY_TASK_ALWAYS_EAGER', 'false').lower() == 'true'

# Logging

structlog.configure(
    processors=[
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

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

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
            "level": "DEBUG",
        }
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "shared": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "config": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "apps.payments": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
}
