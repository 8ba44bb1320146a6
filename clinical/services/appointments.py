"""
Appointment booking and lifecycle.

Booking writes (create, reschedule) lock the provider row before the
conflict check, see :mod:`clinical.services.conflicts`.  Status changes
lock the appointment row and are validated against ``TRANSITIONS``;
every accepted change is written to :class:`AppointmentTransition` in
the same transaction.  Events are published only after commit.
"""
from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Optional

from django.db import transaction
from django.utils import timezone

from clinical.errors import EntityNotFound, StateConflict, ValidationFailed
from clinical.models import Appointment, AppointmentTransition
from clinical.services import events
from clinical.services.audit import stamp
from clinical.services.availability import day_bounds
from clinical.services.conflicts import check_conflict, lock_providers
from clinical.services.directory import parse_uuid, lookup_patient, lookup_provider

logger = logging.getLogger(__name__)

A = Appointment

TRANSITIONS = {
    A.STATUS_SCHEDULED: {A.STATUS_CONFIRMED, A.STATUS_CHECKED_IN, A.STATUS_CANCELLED, A.STATUS_NO_SHOW},
    A.STATUS_CONFIRMED: {A.STATUS_CHECKED_IN, A.STATUS_CANCELLED, A.STATUS_NO_SHOW},
    A.STATUS_CHECKED_IN: {A.STATUS_IN_PROGRESS, A.STATUS_CANCELLED},
    A.STATUS_IN_PROGRESS: {A.STATUS_COMPLETED, A.STATUS_CANCELLED},
    A.STATUS_COMPLETED: set(),
    A.STATUS_CANCELLED: set(),
    A.STATUS_NO_SHOW: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Statuses an edit may set directly. Cancel, no-show and completion have
# their own operations with extra rules.
EDIT_STATUSES = frozenset({A.STATUS_CONFIRMED, A.STATUS_CHECKED_IN})

# Fields a reschedule/edit may overwrite besides time, provider and patient.
EDITABLE_FIELDS = ('appointment_type', 'department', 'location', 'room', 'reason_for_visit', 'notes')


def can_transition(current: str, new: str) -> bool:
    """Return True if an appointment may move from ``current`` to ``new``."""
    return new in TRANSITIONS.get(current, set())


def generate_appointment_number(now=None) -> str:
    now = now or timezone.now()
    return f"APT{now:%Y%m%d}{secrets.token_hex(4).upper()}"


def _validate_interval(start_time, duration) -> None:
    if start_time is None or timezone.is_naive(start_time):
        raise ValidationFailed('start time must be a timezone-aware datetime')
    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        raise ValidationFailed('duration must be a positive number of minutes', details={'duration': duration})


def _load_for_update(appointment_id) -> Appointment:
    pk = parse_uuid(appointment_id)
    appt = Appointment.objects.select_for_update().filter(pk=pk).first() if pk else None
    if appt is None:
        raise EntityNotFound('appointment', appointment_id)
    return appt


def _record_transition(appt: Appointment, old_status: Optional[str], actor, reason: str = '', now=None) -> None:
    AppointmentTransition.objects.create(
        appointment=appt,
        from_status=old_status,
        to_status=appt.status,
        operator=actor if getattr(actor, 'pk', None) else None,
        timestamp=now or timezone.now(),
        reason=(reason or '')[:255],
    )


def _actor_id(actor) -> Optional[int]:
    return getattr(actor, 'pk', None)


def create_appointment(
    *,
    patient_id,
    provider_id,
    appointment_type: str,
    start_time,
    duration: int,
    department: str = '',
    location: str = '',
    room: str = '',
    reason_for_visit: str = '',
    notes: str = '',
    actor=None,
) -> Appointment:
    """Book a new appointment for ``provider_id``.

    Raises ``EntityNotFound`` for an unknown patient/provider,
    ``ValidationFailed`` for a malformed interval and ``BookingConflict``
    when the provider already has a live booking overlapping
    ``[start_time, start_time + duration)``.
    """
    _validate_interval(start_time, duration)
    if appointment_type not in dict(Appointment.TYPE_CHOICES):
        raise ValidationFailed(f'unknown appointment type {appointment_type!r}')
    patient = lookup_patient(patient_id)
    provider = lookup_provider(provider_id)
    end_time = start_time + timedelta(minutes=duration)

    with transaction.atomic():
        lock_providers(provider.pk)
        check_conflict(provider.pk, start_time, end_time)

        now = timezone.now()
        appt = Appointment(
            appointment_number=generate_appointment_number(now),
            patient=patient,
            provider=provider,
            appointment_type=appointment_type,
            status=Appointment.STATUS_SCHEDULED,
            start_time=start_time,
            end_time=end_time,
            duration=duration,
            department=department or provider.department,
            location=location,
            room=room,
            reason_for_visit=reason_for_visit,
            notes=notes,
        )
        stamp(appt, actor, now=now)
        appt.save()
        _record_transition(appt, None, actor, 'booked', now)

        events.publish(events.AppointmentBooked(
            appointment_id=appt.pk,
            appointment_number=appt.appointment_number,
            patient_id=patient.pk,
            provider_id=provider.pk,
            start_time=appt.start_time,
            end_time=appt.end_time,
            created_by=_actor_id(actor),
        ))

    logger.info("booked %s for provider %s at %s", appt.appointment_number, provider.pk, start_time.isoformat())
    return appt


def update_appointment(appointment_id, *, actor=None, **changes) -> Appointment:
    """Reschedule or edit an appointment.

    Accepts any of ``patient_id``, ``provider_id``, ``start_time``,
    ``duration``, ``status`` and the fields in ``EDITABLE_FIELDS``.
    Time or provider changes re-run the conflict guard, excluding the
    appointment itself.  ``status`` is only changed when given, only to
    one of ``EDIT_STATUSES`` and only along ``TRANSITIONS``.
    """
    unknown = set(changes) - {'patient_id', 'provider_id', 'start_time', 'duration', 'status', *EDITABLE_FIELDS}
    if unknown:
        raise ValidationFailed(f"unsupported fields: {', '.join(sorted(unknown))}")

    patient = lookup_patient(changes['patient_id']) if changes.get('patient_id') is not None else None
    new_provider = lookup_provider(changes['provider_id']) if changes.get('provider_id') is not None else None

    with transaction.atomic():
        appt = _load_for_update(appointment_id)
        if appt.status in TERMINAL_STATUSES:
            raise StateConflict('update', appt.status)

        provider_id = new_provider.pk if new_provider else appt.provider_id
        start_time = changes.get('start_time') or appt.start_time
        duration = changes.get('duration') if changes.get('duration') is not None else appt.duration
        _validate_interval(start_time, duration)
        end_time = start_time + timedelta(minutes=duration)

        reschedule = (
            provider_id != appt.provider_id
            or start_time != appt.start_time
            or end_time != appt.end_time
        )
        if reschedule:
            lock_providers(appt.provider_id, provider_id)
            check_conflict(provider_id, start_time, end_time, exclude_id=appt.pk)

        new_status = changes.get('status')
        old_status = appt.status
        if new_status and new_status != old_status and new_status not in EDIT_STATUSES:
            raise StateConflict(
                f'move to {new_status}', old_status, f'status {new_status} cannot be set by an edit',
            )
        if new_status and new_status != old_status and not can_transition(old_status, new_status):
            raise StateConflict(f'move to {new_status}', old_status)

        if patient is not None:
            appt.patient = patient
        if new_provider is not None:
            appt.provider = new_provider
        appt.start_time = start_time
        appt.end_time = end_time
        appt.duration = duration
        for field in EDITABLE_FIELDS:
            if field in changes and changes[field] is not None:
                setattr(appt, field, changes[field])
        if appt.appointment_type not in dict(Appointment.TYPE_CHOICES):
            raise ValidationFailed(f'unknown appointment type {appt.appointment_type!r}')

        now = timezone.now()
        if new_status and new_status != old_status:
            _apply_status_side_effects(appt, new_status, now)
        stamp(appt, actor, now=now)
        appt.save()
        if appt.status != old_status:
            _record_transition(appt, old_status, actor, 'updated', now)
        _publish_status_event(appt, old_status, actor)

    if reschedule:
        logger.info("rescheduled %s to provider %s at %s", appt.appointment_number, provider_id, start_time.isoformat())
    return appt


def _apply_status_side_effects(appt: Appointment, new_status: str, now) -> None:
    appt.status = new_status
    if new_status == Appointment.STATUS_CHECKED_IN:
        appt.checked_in_at = now
    elif new_status == Appointment.STATUS_CANCELLED:
        appt.cancelled_at = now


def _publish_status_event(appt: Appointment, old_status: str, actor) -> None:
    if appt.status == old_status:
        return
    if appt.status == Appointment.STATUS_CHECKED_IN:
        events.publish(events.AppointmentCheckedIn(
            appointment_id=appt.pk,
            patient_id=appt.patient_id,
            provider_id=appt.provider_id,
            checked_in_at=appt.checked_in_at,
        ))
    elif appt.status == Appointment.STATUS_CANCELLED:
        events.publish(events.AppointmentCancelled(
            appointment_id=appt.pk,
            patient_id=appt.patient_id,
            provider_id=appt.provider_id,
            reason=appt.cancellation_reason,
            cancelled_by=_actor_id(actor),
        ))


def transition_appointment(
    appointment_id,
    new_status: str,
    *,
    operation: str,
    actor=None,
    reason: str = '',
    allowed_from=None,
) -> Appointment:
    """Move an appointment to ``new_status`` under a row lock.

    ``allowed_from`` narrows the statuses the operation accepts beyond
    the general ``TRANSITIONS`` table.
    """
    with transaction.atomic():
        appt = _load_for_update(appointment_id)
        old_status = appt.status
        if allowed_from is not None and old_status not in allowed_from:
            raise StateConflict(operation, old_status)
        if not can_transition(old_status, new_status):
            raise StateConflict(operation, old_status)

        now = timezone.now()
        _apply_status_side_effects(appt, new_status, now)
        if new_status == Appointment.STATUS_CANCELLED:
            appt.cancellation_reason = reason or ''
        stamp(appt, actor, now=now)
        appt.save()
        _record_transition(appt, old_status, actor, reason or operation, now)
        _publish_status_event(appt, old_status, actor)

    logger.info("appointment %s %s -> %s", appt.appointment_number, old_status, new_status)
    return appt


def confirm_appointment(appointment_id, *, actor=None) -> Appointment:
    return transition_appointment(appointment_id, Appointment.STATUS_CONFIRMED, operation='confirm', actor=actor)


def check_in_appointment(appointment_id, *, actor=None) -> Appointment:
    return transition_appointment(
        appointment_id,
        Appointment.STATUS_CHECKED_IN,
        operation='check in',
        actor=actor,
        allowed_from={Appointment.STATUS_SCHEDULED, Appointment.STATUS_CONFIRMED},
    )


def start_appointment(appointment_id, *, actor=None) -> Appointment:
    return transition_appointment(appointment_id, Appointment.STATUS_IN_PROGRESS, operation='start', actor=actor)


def cancel_appointment(appointment_id, *, reason: str = '', actor=None) -> Appointment:
    """Cancel a live appointment.

    Cancelling an appointment that is already cancelled, completed or
    marked no-show raises ``StateConflict``; nothing is re-emitted.
    """
    return transition_appointment(
        appointment_id, Appointment.STATUS_CANCELLED, operation='cancel', actor=actor, reason=reason,
    )


def mark_no_show(appointment_id, *, actor=None, now=None) -> Appointment:
    """Flag a scheduled/confirmed appointment whose start has passed."""
    now = now or timezone.now()
    with transaction.atomic():
        appt = _load_for_update(appointment_id)
        if appt.start_time > now:
            raise StateConflict('mark as no-show', appt.status, 'appointment has not started yet')
        return transition_appointment(
            appt.pk, Appointment.STATUS_NO_SHOW, operation='mark as no-show', actor=actor, reason='no show',
        )


# Steps an appointment walks when its encounter starts. A patient seen
# without a front-desk check-in is checked in as part of the encounter.
ENCOUNTER_START_PATH = {
    Appointment.STATUS_SCHEDULED: [Appointment.STATUS_CHECKED_IN, Appointment.STATUS_IN_PROGRESS],
    Appointment.STATUS_CONFIRMED: [Appointment.STATUS_CHECKED_IN, Appointment.STATUS_IN_PROGRESS],
    Appointment.STATUS_CHECKED_IN: [Appointment.STATUS_IN_PROGRESS],
}


def _walk(appointment: Appointment, path, *, actor, reason: str, now) -> None:
    appt = Appointment.objects.select_for_update().get(pk=appointment.pk)
    for status in path.get(appt.status, []):
        old_status = appt.status
        appt.status = status
        fields = stamp(appt, actor, now=now) + ['status']
        if status == Appointment.STATUS_CHECKED_IN:
            appt.checked_in_at = now
            fields.append('checked_in_at')
        appt.save(update_fields=fields)
        _record_transition(appt, old_status, actor, reason, now)
        _publish_status_event(appt, old_status, actor)


def start_for_encounter(appointment: Appointment, *, actor=None, now=None) -> None:
    """Move the appointment an encounter was opened from to ``in_progress``."""
    _walk(appointment, ENCOUNTER_START_PATH, actor=actor, reason='encounter started', now=now or timezone.now())


def complete_for_encounter(appointment: Appointment, *, actor=None, now=None) -> None:
    """Finish the appointment an encounter was opened from.

    Called inside the encounter's transaction.  Every intermediate status
    is logged so the transition history stays contiguous.
    """
    path = {status: steps + [Appointment.STATUS_COMPLETED] for status, steps in ENCOUNTER_START_PATH.items()}
    path[Appointment.STATUS_IN_PROGRESS] = [Appointment.STATUS_COMPLETED]
    _walk(appointment, path, actor=actor, reason='encounter completed', now=now or timezone.now())


def mark_reminder_sent(appointment_id, *, now=None) -> Appointment:
    with transaction.atomic():
        appt = _load_for_update(appointment_id)
        if appt.status in TERMINAL_STATUSES:
            raise StateConflict('send a reminder for', appt.status)
        appt.reminder_sent = True
        appt.reminder_sent_at = now or timezone.now()
        fields = stamp(appt, None, now=appt.reminder_sent_at)
        appt.save(update_fields=fields + ['reminder_sent', 'reminder_sent_at'])
    return appt


def get_appointment(appointment_id) -> Appointment:
    pk = parse_uuid(appointment_id)
    appt = (
        Appointment.objects.select_related('patient', 'provider').filter(pk=pk).first()
        if pk else None
    )
    if appt is None:
        raise EntityNotFound('appointment', appointment_id)
    return appt


def list_appointments(
    *,
    patient_id=None,
    provider_id=None,
    status: Optional[str] = None,
    day=None,
    page: int = 1,
    page_size: int = 20,
):
    qs = Appointment.objects.all()
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if provider_id:
        qs = qs.filter(provider_id=provider_id)
    if status:
        qs = qs.filter(status=status)
    if day is not None:
        day_start, day_end = day_bounds(day)
        qs = qs.filter(start_time__gte=day_start, start_time__lt=day_end)

    total = qs.count()
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 20)))
    start = (page - 1) * page_size
    items = list(qs.select_related('patient', 'provider').order_by('start_time', 'appointment_number')[start:start + page_size])
    return items, total


def overdue_appointments(*, now=None, grace_minutes: int = 0):
    """Scheduled/confirmed appointments that started more than ``grace_minutes`` ago."""
    now = now or timezone.now()
    return (
        Appointment.objects
        .filter(status__in=[Appointment.STATUS_SCHEDULED, Appointment.STATUS_CONFIRMED])
        .filter(start_time__lte=now - timedelta(minutes=grace_minutes))
        .order_by('start_time')
    )


def format_appointment(appt: Appointment) -> dict:
    return {
        'id': str(appt.pk),
        'appointmentNumber': appt.appointment_number,
        'patientId': str(appt.patient_id),
        'providerId': appt.provider_id,
        'appointmentType': appt.appointment_type,
        'status': appt.status,
        'startTime': appt.start_time.isoformat(),
        'endTime': appt.end_time.isoformat(),
        'duration': appt.duration,
        'department': appt.department,
        'location': appt.location,
        'room': appt.room,
        'reasonForVisit': appt.reason_for_visit,
        'notes': appt.notes,
        'reminderSent': appt.reminder_sent,
        'reminderSentAt': appt.reminder_sent_at.isoformat() if appt.reminder_sent_at else None,
        'checkedInAt': appt.checked_in_at.isoformat() if appt.checked_in_at else None,
        'cancelledAt': appt.cancelled_at.isoformat() if appt.cancelled_at else None,
        'cancellationReason': appt.cancellation_reason,
        'createdAt': appt.created_at.isoformat() if appt.created_at else None,
        'updatedAt': appt.updated_at.isoformat() if appt.updated_at else None,
    }
