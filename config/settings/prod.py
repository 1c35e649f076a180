"""Production settings for the reservation engine.

This module extends the base settings with production specific
configuration. Ensure that sensitive values are provided via
environment variables.
"""

from django.core.exceptions import ImproperlyConfigured

from .base import *  # noqa: F401,F403

# Never run with debug enabled in production
DEBUG = False

# Allowed hosts should be defined explicitly via environment variable
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', '').split(',')  # noqa: F405

if SECRET_KEY == 'replace-me-in-production':  # noqa: F405
    raise ImproperlyConfigured("DJANGO_SECRET_KEY must be set in production")

# The sandbox gateway never moves real money
if not PAYMENT_API_KEY:  # noqa: F405
    raise ImproperlyConfigured("PAYMENT_API_KEY must be set in production")
