"""
Provider availability for a single calendar day.

The working window and slot width are configuration
(``settings.SCHEDULING``); the day is interpreted in the project's
current time zone.  A slot touched by any live booking is reported as
unavailable as a whole: partial-slot booking is not offered.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone

from clinical.errors import ValidationFailed
from clinical.models import Appointment
from clinical.services.directory import lookup_provider


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    available: bool

    def as_dict(self) -> dict:
        return {
            'startTime': self.start.isoformat(),
            'endTime': self.end.isoformat(),
            'available': self.available,
        }


def _parse_clock(value) -> time:
    if isinstance(value, time):
        return value
    try:
        hours, minutes = str(value).split(':', 1)
        return time(int(hours), int(minutes))
    except (TypeError, ValueError):
        raise ValidationFailed(f'invalid working-day time {value!r}')


def working_window(day: date, *, start=None, end=None, slot_minutes: Optional[int] = None):
    """Return ``(window_start, window_end, slot_width)`` for ``day``."""
    conf = getattr(settings, 'SCHEDULING', {})
    start_clock = _parse_clock(start if start is not None else conf.get('WORKDAY_START', '08:00'))
    end_clock = _parse_clock(end if end is not None else conf.get('WORKDAY_END', '17:00'))
    slot_minutes = slot_minutes if slot_minutes is not None else int(conf.get('SLOT_MINUTES', 30))

    if slot_minutes <= 0:
        raise ValidationFailed('slot width must be positive', details={'slotMinutes': slot_minutes})
    if end_clock <= start_clock:
        raise ValidationFailed(
            'working window is inverted or empty',
            details={'start': start_clock.isoformat(), 'end': end_clock.isoformat()},
        )

    tz = timezone.get_current_timezone()
    window_start = timezone.make_aware(datetime.combine(day, start_clock), tz)
    window_end = timezone.make_aware(datetime.combine(day, end_clock), tz)
    return window_start, window_end, timedelta(minutes=slot_minutes)


def as_local_date(value) -> date:
    """Reduce a date or datetime to its calendar day in local time."""
    if isinstance(value, datetime):
        if timezone.is_aware(value):
            value = timezone.localtime(value)
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationFailed(f'invalid date {value!r}')


def day_bounds(value) -> tuple[datetime, datetime]:
    """Local midnight-to-midnight bounds of the day containing ``value``."""
    local_day = as_local_date(value)
    day_start = timezone.make_aware(datetime.combine(local_day, time.min), timezone.get_current_timezone())
    return day_start, day_start + timedelta(days=1)


def build_slots(window_start: datetime, window_end: datetime, width: timedelta, busy) -> list[TimeSlot]:
    """Partition the window into slots and flag those overlapping ``busy``.

    ``busy`` is an iterable of ``(start, end)`` pairs.  The last slot is
    clipped at ``window_end`` when the width does not divide the window.
    """
    busy = list(busy)
    slots: list[TimeSlot] = []
    current = window_start
    while current < window_end:
        slot_end = min(current + width, window_end)
        taken = any(current < b_end and slot_end > b_start for b_start, b_end in busy)
        slots.append(TimeSlot(start=current, end=slot_end, available=not taken))
        current = slot_end
    return slots


def get_availability(provider_id, day) -> list[TimeSlot]:
    provider = lookup_provider(provider_id)
    local_day = as_local_date(day)
    window_start, window_end, width = working_window(local_day)

    day_start, day_end = day_bounds(local_day)
    busy = (
        Appointment.objects
        .filter(provider=provider, start_time__lt=day_end, end_time__gt=day_start)
        .exclude(status=Appointment.STATUS_CANCELLED)
        .order_by('start_time')
        .values_list('start_time', 'end_time')
    )
    return build_slots(window_start, window_end, width, busy)
