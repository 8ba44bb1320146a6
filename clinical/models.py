"""
Database models for the EMR scheduling backend.

The scheduling core owns appointments, encounters and the child
records attached to an encounter.  Users (providers and staff) and
patients are directory records that the core only reads; they live in
this app so that foreign keys resolve, but their lifecycle is managed
elsewhere.

Every persisted entity carries the audit columns from
:class:`AuditFields`.  They are written explicitly by
:func:`clinical.services.audit.stamp` rather than by ``auto_now``
hooks so that the acting user and the timestamp are set in one place.
"""
from __future__ import annotations

import uuid

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models


class AuditFields(models.Model):
    """Creation/modification bookkeeping shared by all clinical records."""
    created_at = models.DateTimeField(null=True, blank=True, editable=False)
    updated_at = models.DateTimeField(null=True, blank=True, editable=False)
    deleted_at = models.DateTimeField(null=True, blank=True, db_index=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )

    class Meta:
        abstract = True


class ActiveManager(models.Manager):
    """Hide soft-deleted rows."""

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class User(AbstractUser):
    """Staff account.  Physicians and nurses can be booked as providers."""
    ROLE_ADMIN = 'admin'
    ROLE_PHYSICIAN = 'physician'
    ROLE_NURSE = 'nurse'
    ROLE_RECEPTIONIST = 'receptionist'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_PHYSICIAN, 'Physician'),
        (ROLE_NURSE, 'Nurse'),
        (ROLE_RECEPTIONIST, 'Receptionist'),
    ]
    PROVIDER_ROLES = (ROLE_PHYSICIAN, ROLE_NURSE)

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_RECEPTIONIST, db_index=True)
    department = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"

    @property
    def is_provider(self) -> bool:
        return self.role in self.PROVIDER_ROLES


class Patient(AuditFields):
    """Patient demographics as exposed by the registration directory."""
    SEX_CHOICES = [('M', 'Male'), ('F', 'Female'), ('O', 'Other'), ('U', 'Unknown')]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    mrn = models.CharField(max_length=32, unique=True, help_text="Medical record number")
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    date_of_birth = models.DateField(null=True, blank=True)
    sex = models.CharField(max_length=1, choices=SEX_CHOICES, default='U')
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)

    objects = ActiveManager()
    all_objects = models.Manager()

    def __str__(self) -> str:
        return f"{self.last_name}, {self.first_name} ({self.mrn})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Appointment(AuditFields):
    """A booked slot of a provider's time for a patient.

    ``[start_time, end_time)`` intervals of non-cancelled appointments of
    the same provider never overlap; the booking services guarantee this
    by locking the provider row around the conflict check and the write.
    """
    TYPE_CONSULTATION = 'consultation'
    TYPE_FOLLOW_UP = 'follow_up'
    TYPE_WELLNESS = 'wellness'
    TYPE_PROCEDURE = 'procedure'
    TYPE_EMERGENCY = 'emergency'
    TYPE_TELEHEALTH = 'telehealth'
    TYPE_CHOICES = [
        (TYPE_CONSULTATION, 'Consultation'),
        (TYPE_FOLLOW_UP, 'Follow-up'),
        (TYPE_WELLNESS, 'Wellness'),
        (TYPE_PROCEDURE, 'Procedure'),
        (TYPE_EMERGENCY, 'Emergency'),
        (TYPE_TELEHEALTH, 'Telehealth'),
    ]

    STATUS_SCHEDULED = 'scheduled'
    STATUS_CONFIRMED = 'confirmed'
    STATUS_CHECKED_IN = 'checked_in'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_NO_SHOW = 'no_show'
    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_CHECKED_IN, 'Checked in'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_NO_SHOW, 'No show'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    appointment_number = models.CharField(max_length=32, unique=True)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='appointments')
    provider = models.ForeignKey(User, on_delete=models.PROTECT, related_name='provider_appointments')
    appointment_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SCHEDULED, db_index=True)
    start_time = models.DateTimeField(db_index=True)
    end_time = models.DateTimeField()
    duration = models.PositiveIntegerField(help_text="Length in minutes; always end_time - start_time")
    department = models.CharField(max_length=255, blank=True)
    location = models.CharField(max_length=255, blank=True)
    room = models.CharField(max_length=64, blank=True)
    reason_for_visit = models.TextField(blank=True)
    notes = models.TextField(blank=True)
    reminder_sent = models.BooleanField(default=False)
    reminder_sent_at = models.DateTimeField(null=True, blank=True)
    checked_in_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)

    objects = ActiveManager()
    all_objects = models.Manager()

    class Meta:
        indexes = [
            models.Index(fields=['provider', 'start_time', 'end_time'], name='appt_provider_interval_idx'),
            models.Index(fields=['patient', 'start_time'], name='appt_patient_start_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.appointment_number} {self.start_time:%F %H:%M} ({self.status})"


class AppointmentTransition(models.Model):
    """Records a status transition for an appointment."""
    appointment = models.ForeignKey(Appointment, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=20, null=True, blank=True)
    to_status = models.CharField(max_length=20)
    operator = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    timestamp = models.DateTimeField()
    reason = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:
        return f"{self.appointment_id}: {self.from_status} → {self.to_status}"


class Encounter(AuditFields):
    """A single clinical visit, separate from its scheduling record."""
    TYPE_OUTPATIENT = 'outpatient'
    TYPE_INPATIENT = 'inpatient'
    TYPE_EMERGENCY = 'emergency'
    TYPE_WELLNESS = 'wellness'
    TYPE_TELEHEALTH = 'telehealth'
    TYPE_CHOICES = [
        (TYPE_OUTPATIENT, 'Outpatient'),
        (TYPE_INPATIENT, 'Inpatient'),
        (TYPE_EMERGENCY, 'Emergency'),
        (TYPE_WELLNESS, 'Wellness'),
        (TYPE_TELEHEALTH, 'Telehealth'),
    ]

    STATUS_SCHEDULED = 'scheduled'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_SCHEDULED, 'Scheduled'),
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    PRIORITY_ROUTINE = 'routine'
    PRIORITY_URGENT = 'urgent'
    PRIORITY_EMERGENT = 'emergent'
    PRIORITY_CHOICES = [
        (PRIORITY_ROUTINE, 'Routine'),
        (PRIORITY_URGENT, 'Urgent'),
        (PRIORITY_EMERGENT, 'Emergent'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    encounter_number = models.CharField(max_length=32, unique=True)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='encounters')
    provider = models.ForeignKey(User, on_delete=models.PROTECT, related_name='provider_encounters')
    appointment = models.ForeignKey(
        Appointment, null=True, blank=True, on_delete=models.SET_NULL, related_name='encounters'
    )
    encounter_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SCHEDULED, db_index=True)
    priority = models.CharField(max_length=10, choices=PRIORITY_CHOICES, default=PRIORITY_ROUTINE)
    department = models.CharField(max_length=255, blank=True)
    location = models.CharField(max_length=255, blank=True)
    admission_time = models.DateTimeField()
    # Set if and only if status is completed.
    discharge_time = models.DateTimeField(null=True, blank=True)
    chief_complaint = models.TextField(blank=True)
    reason_for_visit = models.TextField(blank=True)

    objects = ActiveManager()
    all_objects = models.Manager()

    class Meta:
        indexes = [
            models.Index(fields=['provider', 'admission_time'], name='enc_provider_admission_idx'),
            models.Index(fields=['patient', 'admission_time'], name='enc_patient_admission_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.encounter_number} ({self.status})"


class EncounterTransition(models.Model):
    """Records a status transition for an encounter."""
    encounter = models.ForeignKey(Encounter, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=20, null=True, blank=True)
    to_status = models.CharField(max_length=20)
    operator = models.ForeignKey(User, null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    timestamp = models.DateTimeField()
    reason = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:
        return f"{self.encounter_id}: {self.from_status} → {self.to_status}"


class ClinicalNote(AuditFields):
    """SOAP or free-text documentation attached to an encounter."""
    NOTE_SOAP = 'soap'
    NOTE_PROGRESS = 'progress'
    NOTE_CONSULT = 'consult'
    NOTE_DISCHARGE = 'discharge'
    NOTE_PROCEDURE = 'procedure'
    NOTE_TYPE_CHOICES = [
        (NOTE_SOAP, 'SOAP'),
        (NOTE_PROGRESS, 'Progress'),
        (NOTE_CONSULT, 'Consult'),
        (NOTE_DISCHARGE, 'Discharge'),
        (NOTE_PROCEDURE, 'Procedure'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name='clinical_notes')
    note_type = models.CharField(max_length=20, choices=NOTE_TYPE_CHOICES)
    subjective = models.TextField(blank=True)
    objective = models.TextField(blank=True)
    assessment = models.TextField(blank=True)
    plan = models.TextField(blank=True)
    content = models.TextField(blank=True)
    author = models.ForeignKey(User, on_delete=models.PROTECT, related_name='clinical_notes')
    signed_at = models.DateTimeField(null=True, blank=True)

    objects = ActiveManager()
    all_objects = models.Manager()

    def __str__(self) -> str:
        return f"{self.note_type} note for {self.encounter_id}"


class Diagnosis(AuditFields):
    DIAGNOSIS_PRIMARY = 'primary'
    DIAGNOSIS_SECONDARY = 'secondary'
    DIAGNOSIS_DIFFERENTIAL = 'differential'
    DIAGNOSIS_TYPE_CHOICES = [
        (DIAGNOSIS_PRIMARY, 'Primary'),
        (DIAGNOSIS_SECONDARY, 'Secondary'),
        (DIAGNOSIS_DIFFERENTIAL, 'Differential'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name='diagnoses')
    icd10_code = models.CharField(max_length=16)
    description = models.CharField(max_length=500)
    diagnosis_type = models.CharField(max_length=20, choices=DIAGNOSIS_TYPE_CHOICES)
    status = models.CharField(max_length=20, default='active')
    onset_date = models.DateField(null=True, blank=True)
    resolved_date = models.DateField(null=True, blank=True)
    severity = models.CharField(max_length=50, blank=True)
    notes = models.TextField(blank=True)
    diagnosed_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='diagnoses')

    objects = ActiveManager()
    all_objects = models.Manager()

    class Meta:
        verbose_name_plural = 'diagnoses'

    def __str__(self) -> str:
        return f"{self.icd10_code} {self.description[:30]}"


class VitalSign(AuditFields):
    """One set of vital-sign readings.  Weight is kg, height is cm."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    encounter = models.ForeignKey(Encounter, on_delete=models.CASCADE, related_name='vital_signs')
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='vital_signs')
    measured_at = models.DateTimeField()
    temperature = models.FloatField(null=True, blank=True)
    temperature_unit = models.CharField(max_length=1, default='C', blank=True)
    heart_rate = models.PositiveIntegerField(null=True, blank=True)
    respiratory_rate = models.PositiveIntegerField(null=True, blank=True)
    blood_pressure_systolic = models.PositiveIntegerField(null=True, blank=True)
    blood_pressure_diastolic = models.PositiveIntegerField(null=True, blank=True)
    oxygen_saturation = models.FloatField(null=True, blank=True)
    weight = models.FloatField(null=True, blank=True)
    height = models.FloatField(null=True, blank=True)
    bmi = models.FloatField(null=True, blank=True)
    pain = models.PositiveSmallIntegerField(null=True, blank=True)
    notes = models.TextField(blank=True)
    recorded_by = models.ForeignKey(User, on_delete=models.PROTECT, related_name='recorded_vital_signs')

    objects = ActiveManager()
    all_objects = models.Manager()

    class Meta:
        indexes = [models.Index(fields=['encounter', 'measured_at'], name='vitals_encounter_time_idx')]

    def __str__(self) -> str:
        return f"vitals {self.encounter_id} @ {self.measured_at:%F %T}"
