"""Celery tasks for the booking domain."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

logger = logging.getLogger(__name__)


# ============================================================================
# PERIODIC TASKS (run by Celery Beat)
# ============================================================================

@shared_task(name="bookings.complete_finished_bookings")
def complete_finished_bookings() -> dict[str, int]:
    """
    Complete Confirmed bookings whose interval has ended.

    Bookings with an open dispute are skipped and picked up again once the
    dispute is resolved.

    Returns:
        dict: {"completed": number of completed bookings}
    """
    from config.bootstrap import bootstrap

    completed = bootstrap().complete_finished_bookings()
    logger.info(f"Completed {len(completed)} finished bookings")
    return {"completed": len(completed)}
