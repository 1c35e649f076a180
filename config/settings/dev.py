"""Development settings for the reservation engine.

This module extends the base settings with development specific
configuration: debug mode, verbose engine logs and immediate Celery task
execution. Do not use these settings in production!
"""

from .base import *  # noqa: F401,F403

# Enable debug mode for development
DEBUG = True

# Allow all hosts in development
ALLOWED_HOSTS = ['*']

LOGGING["loggers"]["apps"]["level"] = "DEBUG"  # noqa: F405

# Run periodic jobs inline when triggered by hand
CELERY_TASK_ALWAYS_EAGER = True
