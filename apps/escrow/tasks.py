"""Celery tasks for the escrow ledger."""

from __future__ import annotations

import logging

from celery import shared_task  # type: ignore

logger = logging.getLogger(__name__)


@shared_task(name="escrow.release_due_escrows")
def release_due_escrows() -> dict[str, int]:
    """
    Pay out escrows whose hold window after completion has passed.

    Escrows under an open dispute stay held.

    Returns:
        dict: {"released": number of released escrows}
    """
    from config.bootstrap import bootstrap

    released = bootstrap().release_due_escrows()
    logger.info(f"Released {len(released)} due escrows")
    return {"released": len(released)}
