"""
Booking conflict guard.

A provider's live appointments must have pairwise-disjoint
``[start, end)`` intervals.  The check alone cannot guarantee that under
concurrent requests, so every booking write follows the same protocol
inside one ``transaction.atomic()`` block:

1. :func:`lock_providers` takes ``SELECT ... FOR UPDATE`` on the
   provider rows involved, in ascending id order;
2. :func:`check_conflict` runs against the now-stable booking set;
3. the caller inserts or updates the appointment.

A second booking for the same provider blocks at step 1 until the
first transaction commits or rolls back, and then sees its row.
"""
from __future__ import annotations

import logging
from typing import Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from prometheus_client import Counter

from clinical.errors import BookingConflict, ValidationFailed
from clinical.models import Appointment

User = get_user_model()
logger = logging.getLogger(__name__)

BOOKING_CONFLICTS = Counter(
    'clinical_booking_conflicts_total',
    'Booking attempts rejected because the provider was already booked',
)


def lock_providers(*provider_ids) -> list:
    """Serialize booking writes for the given providers.

    Must be called inside an atomic block; the locks are held until the
    transaction ends.  Returns the ids in the order they were locked.
    """
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError('lock_providers() requires an open transaction')
    ids = sorted({pid for pid in provider_ids if pid is not None})
    # Evaluate the queryset so the lock is actually taken.
    list(User.objects.select_for_update().filter(pk__in=ids).order_by('pk').values_list('pk', flat=True))
    return ids


def find_conflicts(provider_id, start, end, exclude_id=None):
    qs = (
        Appointment.objects
        .filter(provider_id=provider_id, start_time__lt=end, end_time__gt=start)
        .exclude(status=Appointment.STATUS_CANCELLED)
    )
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)
    return qs


def check_conflict(provider_id, start, end, exclude_id: Optional[object] = None) -> None:
    """Admit ``[start, end)`` for the provider or raise :class:`BookingConflict`."""
    if end <= start:
        raise ValidationFailed(
            'end time must be after start time',
            details={'start': start.isoformat(), 'end': end.isoformat()},
        )
    clashes = list(
        find_conflicts(provider_id, start, end, exclude_id)
        .order_by('start_time')
        .values_list('appointment_number', flat=True)[:10]
    )
    if clashes:
        BOOKING_CONFLICTS.inc()
        logger.info(
            "booking conflict for provider %s %s-%s with %s",
            provider_id, start.isoformat(), end.isoformat(), ', '.join(clashes),
        )
        raise BookingConflict(provider_id, start, end, clashes)
