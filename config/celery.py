import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("parking_escrow")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Complete bookings whose interval has ended - every 5 minutes
    "complete-finished-bookings": {
        "task": "bookings.complete_finished_bookings",
        "schedule": 300.0,
        "options": {"expires": 240},
    },
    # Pay out escrows whose hold window has passed - every hour
    "release-due-escrows": {
        "task": "escrow.release_due_escrows",
        "schedule": crontab(minute=30),
    },
}

app.conf.timezone = "UTC"
