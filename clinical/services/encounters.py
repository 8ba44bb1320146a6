"""
Encounter lifecycle and clinical child records.

Status changes follow ``TRANSITIONS``; anything else (including
completing an already completed encounter) is rejected with
``InvalidTransition`` so that ``discharge_time`` is written exactly once.
An encounter opened from an appointment drives that appointment to
``in_progress``/``completed`` along with it.
"""
from __future__ import annotations

import logging
import secrets
from typing import Optional

from django.db import transaction
from django.db.models import Prefetch
from django.utils import timezone

from clinical.errors import EntityNotFound, InvalidTransition, ValidationFailed
from clinical.models import (
    Appointment,
    ClinicalNote,
    Diagnosis,
    Encounter,
    EncounterTransition,
    VitalSign,
)
from clinical.services import events
from clinical.services.appointments import complete_for_encounter, start_for_encounter
from clinical.services.audit import stamp
from clinical.services.directory import lookup_patient, lookup_provider, lookup_user, parse_uuid

logger = logging.getLogger(__name__)

E = Encounter

TRANSITIONS = {
    E.STATUS_SCHEDULED: {E.STATUS_IN_PROGRESS, E.STATUS_CANCELLED},
    E.STATUS_IN_PROGRESS: {E.STATUS_COMPLETED, E.STATUS_CANCELLED},
    E.STATUS_COMPLETED: set(),
    E.STATUS_CANCELLED: set(),
}

INITIAL_STATUSES = (E.STATUS_SCHEDULED, E.STATUS_IN_PROGRESS)


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, set())


def generate_encounter_number(now=None) -> str:
    now = now or timezone.now()
    return f"ENC{now:%Y%m%d}{secrets.token_hex(4).upper()}"


def _load(encounter_id, *, for_update: bool = False) -> Encounter:
    pk = parse_uuid(encounter_id)
    qs = Encounter.objects.select_for_update() if for_update else Encounter.objects.all()
    encounter = qs.filter(pk=pk).first() if pk else None
    if encounter is None:
        raise EntityNotFound('encounter', encounter_id)
    return encounter


def _record_transition(encounter: Encounter, old_status: Optional[str], actor, reason: str, now) -> None:
    EncounterTransition.objects.create(
        encounter=encounter,
        from_status=old_status,
        to_status=encounter.status,
        operator=actor if getattr(actor, 'pk', None) else None,
        timestamp=now,
        reason=(reason or '')[:255],
    )


def create_encounter(
    *,
    patient_id,
    provider_id,
    encounter_type: str,
    admission_time,
    priority: str = Encounter.PRIORITY_ROUTINE,
    status: str = Encounter.STATUS_SCHEDULED,
    appointment_id=None,
    department: str = '',
    location: str = '',
    chief_complaint: str = '',
    reason_for_visit: str = '',
    actor=None,
) -> Encounter:
    """Admit a patient: open a new encounter in ``scheduled`` or ``in_progress``."""
    if encounter_type not in dict(Encounter.TYPE_CHOICES):
        raise ValidationFailed(f'unknown encounter type {encounter_type!r}')
    if priority not in dict(Encounter.PRIORITY_CHOICES):
        raise ValidationFailed(f'unknown priority {priority!r}')
    if status not in INITIAL_STATUSES:
        raise ValidationFailed(
            f'encounters start as {" or ".join(INITIAL_STATUSES)}', details={'status': status},
        )
    if admission_time is None or timezone.is_naive(admission_time):
        raise ValidationFailed('admission time must be a timezone-aware datetime')

    patient = lookup_patient(patient_id)
    provider = lookup_provider(provider_id)

    with transaction.atomic():
        appointment = None
        if appointment_id is not None:
            pk = parse_uuid(appointment_id)
            appointment = Appointment.objects.filter(pk=pk).first() if pk else None
            if appointment is None:
                raise EntityNotFound('appointment', appointment_id)
            if appointment.patient_id != patient.pk or appointment.provider_id != provider.pk:
                raise ValidationFailed(
                    'appointment belongs to a different patient or provider',
                    details={'appointmentId': str(appointment.pk)},
                )

        now = timezone.now()
        encounter = Encounter(
            encounter_number=generate_encounter_number(now),
            patient=patient,
            provider=provider,
            appointment=appointment,
            encounter_type=encounter_type,
            status=status,
            priority=priority,
            department=department or provider.department,
            location=location,
            admission_time=admission_time,
            chief_complaint=chief_complaint,
            reason_for_visit=reason_for_visit,
        )
        stamp(encounter, actor, now=now)
        encounter.save()
        _record_transition(encounter, None, actor, 'admitted', now)
        if appointment is not None and status == Encounter.STATUS_IN_PROGRESS:
            start_for_encounter(appointment, actor=actor, now=now)

        events.publish(events.EncounterCreated(
            encounter_id=encounter.pk,
            encounter_number=encounter.encounter_number,
            patient_id=patient.pk,
            provider_id=provider.pk,
            created_by=getattr(actor, 'pk', None),
        ))

    logger.info("opened encounter %s for patient %s", encounter.encounter_number, patient.pk)
    return encounter


def update_encounter_status(encounter_id, new_status: str, *, actor=None, reason: str = '') -> Encounter:
    """Move an encounter along its state graph.

    Completing sets ``discharge_time`` to now; an encounter cannot be
    completed before its admission time.
    """
    if new_status not in dict(Encounter.STATUS_CHOICES):
        raise ValidationFailed(f'unknown encounter status {new_status!r}')

    with transaction.atomic():
        encounter = _load(encounter_id, for_update=True)
        old_status = encounter.status
        if not can_transition(old_status, new_status):
            raise InvalidTransition(old_status, new_status)

        now = timezone.now()
        if new_status == Encounter.STATUS_COMPLETED:
            if now < encounter.admission_time:
                raise InvalidTransition(
                    old_status, new_status, 'cannot discharge before the admission time',
                )
            encounter.discharge_time = now
        encounter.status = new_status
        stamp(encounter, actor, now=now)
        encounter.save()
        _record_transition(encounter, old_status, actor, reason or 'status update', now)

        if encounter.appointment_id:
            if new_status == Encounter.STATUS_IN_PROGRESS:
                start_for_encounter(encounter.appointment, actor=actor, now=now)
            elif new_status == Encounter.STATUS_COMPLETED:
                complete_for_encounter(encounter.appointment, actor=actor, now=now)

        events.publish(events.EncounterStatusChanged(
            encounter_id=encounter.pk,
            status=new_status,
            updated_by=getattr(actor, 'pk', None),
        ))

    logger.info("encounter %s %s -> %s", encounter.encounter_number, old_status, new_status)
    return encounter


def get_encounter(encounter_id) -> Encounter:
    pk = parse_uuid(encounter_id)
    encounter = None
    if pk:
        encounter = (
            Encounter.objects
            .select_related('patient', 'provider', 'appointment')
            .prefetch_related(
                Prefetch('clinical_notes', queryset=ClinicalNote.objects.select_related('author').order_by('created_at')),
                Prefetch('diagnoses', queryset=Diagnosis.objects.order_by('created_at')),
                Prefetch('vital_signs', queryset=VitalSign.objects.order_by('measured_at')),
            )
            .filter(pk=pk)
            .first()
        )
    if encounter is None:
        raise EntityNotFound('encounter', encounter_id)
    return encounter


def list_encounters(*, patient_id=None, provider_id=None, status: Optional[str] = None, page: int = 1, page_size: int = 20):
    qs = Encounter.objects.all()
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    if provider_id:
        qs = qs.filter(provider_id=provider_id)
    if status:
        qs = qs.filter(status=status)

    total = qs.count()
    page = max(1, int(page or 1))
    page_size = min(100, max(1, int(page_size or 20)))
    start = (page - 1) * page_size
    items = list(qs.select_related('patient', 'provider').order_by('-admission_time', '-encounter_number')[start:start + page_size])
    return items, total


# ---------------------------------------------------------------------------
# Child records
# ---------------------------------------------------------------------------

def add_clinical_note(encounter_id, *, author, note_type: str, subjective: str = '', objective: str = '',
                      assessment: str = '', plan: str = '', content: str = '') -> ClinicalNote:
    if note_type not in dict(ClinicalNote.NOTE_TYPE_CHOICES):
        raise ValidationFailed(f'unknown note type {note_type!r}')
    encounter = _load(encounter_id)
    author = lookup_user(author)
    note = ClinicalNote(
        encounter=encounter,
        note_type=note_type,
        subjective=subjective,
        objective=objective,
        assessment=assessment,
        plan=plan,
        content=content,
        author=author,
    )
    stamp(note, author)
    note.save()
    return note


def add_diagnosis(encounter_id, *, diagnosed_by, icd10_code: str, description: str, diagnosis_type: str,
                  onset_date=None, severity: str = '', notes: str = '') -> Diagnosis:
    if diagnosis_type not in dict(Diagnosis.DIAGNOSIS_TYPE_CHOICES):
        raise ValidationFailed(f'unknown diagnosis type {diagnosis_type!r}')
    encounter = _load(encounter_id)
    clinician = lookup_user(diagnosed_by)
    diagnosis = Diagnosis(
        encounter=encounter,
        icd10_code=icd10_code.strip().upper(),
        description=description,
        diagnosis_type=diagnosis_type,
        status='active',
        onset_date=onset_date,
        severity=severity,
        notes=notes,
        diagnosed_by=clinician,
    )
    stamp(diagnosis, clinician)
    diagnosis.save()
    return diagnosis


def body_mass_index(weight_kg: Optional[float], height_cm: Optional[float]) -> Optional[float]:
    """BMI from kg and cm; ``None`` unless both are present and height is positive."""
    if weight_kg is None or height_cm is None or height_cm <= 0:
        return None
    height_m = height_cm / 100
    return weight_kg / (height_m * height_m)


VITAL_FIELDS = (
    'temperature', 'temperature_unit', 'heart_rate', 'respiratory_rate',
    'blood_pressure_systolic', 'blood_pressure_diastolic', 'oxygen_saturation',
    'weight', 'height', 'pain', 'notes',
)


def record_vital_signs(encounter_id, *, recorded_by, measured_at=None, **readings) -> VitalSign:
    unknown = set(readings) - set(VITAL_FIELDS)
    if unknown:
        raise ValidationFailed(f"unsupported readings: {', '.join(sorted(unknown))}")
    encounter = _load(encounter_id)
    recorder = lookup_user(recorded_by)
    vitals = VitalSign(
        encounter=encounter,
        patient_id=encounter.patient_id,
        measured_at=measured_at or timezone.now(),
        recorded_by=recorder,
        bmi=body_mass_index(readings.get('weight'), readings.get('height')),
        **{k: v for k, v in readings.items() if v is not None},
    )
    stamp(vitals, recorder)
    vitals.save()
    return vitals


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def _iso(value):
    return value.isoformat() if value else None


def format_encounter(encounter: Encounter, *, with_children: bool = False) -> dict:
    data = {
        'id': str(encounter.pk),
        'encounterNumber': encounter.encounter_number,
        'patientId': str(encounter.patient_id),
        'providerId': encounter.provider_id,
        'appointmentId': str(encounter.appointment_id) if encounter.appointment_id else None,
        'encounterType': encounter.encounter_type,
        'status': encounter.status,
        'priority': encounter.priority,
        'department': encounter.department,
        'location': encounter.location,
        'admissionTime': _iso(encounter.admission_time),
        'dischargeTime': _iso(encounter.discharge_time),
        'chiefComplaint': encounter.chief_complaint,
        'reasonForVisit': encounter.reason_for_visit,
        'updatedAt': _iso(encounter.updated_at),
    }
    if with_children:
        data['clinicalNotes'] = [format_note(n) for n in encounter.clinical_notes.all()]
        data['diagnoses'] = [format_diagnosis(d) for d in encounter.diagnoses.all()]
        data['vitalSigns'] = [format_vitals(v) for v in encounter.vital_signs.all()]
    return data


def format_note(note: ClinicalNote) -> dict:
    return {
        'id': str(note.pk),
        'encounterId': str(note.encounter_id),
        'noteType': note.note_type,
        'subjective': note.subjective,
        'objective': note.objective,
        'assessment': note.assessment,
        'plan': note.plan,
        'content': note.content,
        'authorId': note.author_id,
        'createdAt': _iso(note.created_at),
    }


def format_diagnosis(diagnosis: Diagnosis) -> dict:
    return {
        'id': str(diagnosis.pk),
        'encounterId': str(diagnosis.encounter_id),
        'icd10Code': diagnosis.icd10_code,
        'description': diagnosis.description,
        'diagnosisType': diagnosis.diagnosis_type,
        'status': diagnosis.status,
        'onsetDate': diagnosis.onset_date.isoformat() if diagnosis.onset_date else None,
        'severity': diagnosis.severity,
        'notes': diagnosis.notes,
        'diagnosedBy': diagnosis.diagnosed_by_id,
    }


def format_vitals(vitals: VitalSign) -> dict:
    return {
        'id': str(vitals.pk),
        'encounterId': str(vitals.encounter_id),
        'measuredAt': _iso(vitals.measured_at),
        'temperature': vitals.temperature,
        'temperatureUnit': vitals.temperature_unit,
        'heartRate': vitals.heart_rate,
        'respiratoryRate': vitals.respiratory_rate,
        'bloodPressureSystolic': vitals.blood_pressure_systolic,
        'bloodPressureDiastolic': vitals.blood_pressure_diastolic,
        'oxygenSaturation': vitals.oxygen_saturation,
        'weight': vitals.weight,
        'height': vitals.height,
        'bmi': round(vitals.bmi, 1) if vitals.bmi is not None else None,
        'pain': vitals.pain,
        'notes': vitals.notes,
        'recordedBy': vitals.recorded_by_id,
    }
