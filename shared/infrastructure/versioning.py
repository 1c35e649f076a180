"""
Optimistic compare-and-swap writes for aggregate rows.

Every versioned table has an integer ``version`` column. A new aggregate
(version 0) is inserted with version 1; an existing one is written with
``UPDATE ... WHERE id = %s AND version = %s`` and loses with
ConcurrencyError when another writer got there first.
"""

from __future__ import annotations

import logging

from django.db import IntegrityError, transaction  # type: ignore
from django.db.models import F  # type: ignore

from shared.domain.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)


def save_versioned(model, aggregate, values: dict, using: str | None = None) -> None:
    """Insert or CAS-update ``aggregate`` as a ``model`` row and bump its version."""

    manager = model._default_manager.db_manager(using)
    label = model._meta.label

    if aggregate.version == 0:
        try:
            with transaction.atomic(using=using):
                manager.create(id=aggregate.id, version=1, **values)
        except IntegrityError as exc:
            logger.warning(f"Insert of {label} {aggregate.id} conflicted: {exc}")
            raise ConcurrencyError(f"{label} {aggregate.id} conflicts with an existing record") from exc
    else:
        updated = manager.filter(id=aggregate.id, version=aggregate.version).update(
            version=F("version") + 1,
            **values,
        )
        if not updated:
            logger.warning(f"Stale write to {label} {aggregate.id} at version {aggregate.version}")
            raise ConcurrencyError(
                f"{label} {aggregate.id} was modified concurrently "
                f"(expected version {aggregate.version})"
            )

    aggregate.version += 1


def lock_queryset_if_possible(queryset):
    """Apply select_for_update when inside transaction.atomic()."""

    if not transaction.get_connection(queryset.db).in_atomic_block:
        return queryset
    return queryset.select_for_update()
