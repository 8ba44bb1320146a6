from datetime import timedelta

import pytest
from django.core.management import call_command
from django.utils import timezone

from clinical.errors import EntityNotFound, InvalidTransition, StateConflict, ValidationFailed
from clinical.models import Appointment, ClinicalNote, Encounter, EncounterTransition
from clinical.services import appointments as appointment_svc
from clinical.services import encounters as svc
from clinical.services.audit import soft_delete

pytestmark = pytest.mark.django_db


def admit(patient, provider, *, hours_ago=1, **kw):
    return svc.create_encounter(
        patient_id=patient.pk,
        provider_id=provider.pk,
        encounter_type=kw.pop('encounter_type', 'outpatient'),
        admission_time=timezone.now() - timedelta(hours=hours_ago),
        **kw,
    )


def test_encounter_transition_table():
    E = Encounter
    assert svc.can_transition(E.STATUS_SCHEDULED, E.STATUS_IN_PROGRESS)
    assert svc.can_transition(E.STATUS_SCHEDULED, E.STATUS_CANCELLED)
    assert svc.can_transition(E.STATUS_IN_PROGRESS, E.STATUS_COMPLETED)
    assert not svc.can_transition(E.STATUS_SCHEDULED, E.STATUS_COMPLETED)
    assert not svc.can_transition(E.STATUS_COMPLETED, E.STATUS_COMPLETED)
    assert not svc.can_transition(E.STATUS_CANCELLED, E.STATUS_IN_PROGRESS)


def test_create_encounter_records_admission(patient, physician, nurse):
    encounter = admit(patient, physician, actor=nurse, chief_complaint='fever')
    assert encounter.status == Encounter.STATUS_SCHEDULED
    assert encounter.priority == Encounter.PRIORITY_ROUTINE
    assert encounter.encounter_number.startswith('ENC')
    assert encounter.department == 'Diagnostics'
    assert encounter.created_by == nurse
    assert EncounterTransition.objects.get(encounter=encounter).to_status == Encounter.STATUS_SCHEDULED


def test_create_encounter_rejects_bad_initial_status(patient, physician):
    with pytest.raises(ValidationFailed):
        admit(patient, physician, status=Encounter.STATUS_COMPLETED)


def test_appointment_must_match_patient_and_provider(patient, physician, nurse):
    appt = appointment_svc.create_appointment(
        patient_id=patient.pk, provider_id=nurse.pk, appointment_type='wellness',
        start_time=timezone.now() + timedelta(days=1), duration=15,
    )
    with pytest.raises(ValidationFailed):
        admit(patient, physician, appointment_id=appt.pk)
    with pytest.raises(EntityNotFound):
        admit(patient, physician, appointment_id='00000000-0000-0000-0000-000000000000')


def test_complete_sets_discharge_time_once(patient, physician, channel_layer, django_capture_on_commit_callbacks):
    encounter = admit(patient, physician)
    with django_capture_on_commit_callbacks(execute=True):
        svc.update_encounter_status(encounter.pk, Encounter.STATUS_IN_PROGRESS, actor=physician)
        done = svc.update_encounter_status(encounter.pk, Encounter.STATUS_COMPLETED, actor=physician)
    assert done.discharge_time is not None
    assert done.updated_by == physician

    with pytest.raises(InvalidTransition):
        svc.update_encounter_status(encounter.pk, Encounter.STATUS_COMPLETED)
    done.refresh_from_db()
    assert done.discharge_time is not None

    payloads = [
        c.args[1]['data'] for c in channel_layer.group_send.await_args_list
        if c.args[0] == 'clinical.events'
    ]
    assert [p['status'] for p in payloads] == ['in_progress', 'completed']
    assert payloads[-1]['updated_by'] == physician.pk


def test_scheduled_cannot_jump_to_completed(patient, physician):
    encounter = admit(patient, physician)
    with pytest.raises(InvalidTransition) as excinfo:
        svc.update_encounter_status(encounter.pk, Encounter.STATUS_COMPLETED)
    assert excinfo.value.details == {'currentStatus': 'scheduled', 'requestedStatus': 'completed'}
    encounter.refresh_from_db()
    assert encounter.discharge_time is None


def test_cannot_discharge_before_admission(patient, physician):
    encounter = admit(patient, physician, hours_ago=-2, status=Encounter.STATUS_IN_PROGRESS)
    with pytest.raises(InvalidTransition):
        svc.update_encounter_status(encounter.pk, Encounter.STATUS_COMPLETED)


def test_cancelled_encounter_leaves_appointment_alone(patient, physician):
    appt = appointment_svc.create_appointment(
        patient_id=patient.pk, provider_id=physician.pk, appointment_type='consultation',
        start_time=timezone.now() + timedelta(hours=1), duration=30,
    )
    appointment_svc.check_in_appointment(appt.pk)
    encounter = admit(patient, physician, appointment_id=appt.pk)
    svc.update_encounter_status(encounter.pk, Encounter.STATUS_CANCELLED)
    appt.refresh_from_db()
    assert appt.status == Appointment.STATUS_CHECKED_IN


def test_body_mass_index():
    assert svc.body_mass_index(70, 175) == pytest.approx(22.857, rel=1e-3)
    assert svc.body_mass_index(70, None) is None
    assert svc.body_mass_index(None, 175) is None
    assert svc.body_mass_index(70, 0) is None


def test_record_vital_signs(patient, physician, nurse):
    encounter = admit(patient, physician)
    vitals = svc.record_vital_signs(encounter.pk, recorded_by=nurse, weight=80.0, height=180.0, heart_rate=64)
    assert vitals.patient_id == patient.pk
    assert vitals.bmi == pytest.approx(24.69, rel=1e-3)
    assert vitals.measured_at is not None

    without_height = svc.record_vital_signs(encounter.pk, recorded_by=nurse, weight=80.0)
    assert without_height.bmi is None


def test_clinical_documents_require_existing_encounter(physician):
    missing = '00000000-0000-0000-0000-000000000000'
    with pytest.raises(EntityNotFound):
        svc.add_clinical_note(missing, author=physician, note_type='soap', subjective='ok')
    with pytest.raises(EntityNotFound):
        svc.add_diagnosis(missing, diagnosed_by=physician, icd10_code='I10',
                          description='Essential hypertension', diagnosis_type='primary')


def test_add_diagnosis_and_note(patient, physician):
    encounter = admit(patient, physician)
    diagnosis = svc.add_diagnosis(
        encounter.pk, diagnosed_by=physician, icd10_code=' i10 ',
        description='Essential hypertension', diagnosis_type='primary',
    )
    assert diagnosis.icd10_code == 'I10'
    assert diagnosis.status == 'active'
    note = svc.add_clinical_note(encounter.pk, author=physician, note_type='soap', assessment='stable')

    loaded = svc.get_encounter(encounter.pk)
    data = svc.format_encounter(loaded, with_children=True)
    assert [d['id'] for d in data['diagnoses']] == [str(diagnosis.pk)]
    assert [n['id'] for n in data['clinicalNotes']] == [str(note.pk)]


def test_list_encounters_newest_first(patient, physician):
    older = admit(patient, physician, hours_ago=5)
    newer = admit(patient, physician, hours_ago=1)
    items, total = svc.list_encounters(patient_id=patient.pk)
    assert total == 2
    assert [e.pk for e in items] == [newer.pk, older.pk]


def test_retracted_note_is_hidden(patient, physician):
    encounter = admit(patient, physician)
    note = svc.add_clinical_note(encounter.pk, author=physician, note_type='progress', content='wrong chart')
    soft_delete(note, physician)

    data = svc.format_encounter(svc.get_encounter(encounter.pk), with_children=True)
    assert data['clinicalNotes'] == []
    assert ClinicalNote.all_objects.get(pk=note.pk).deleted_at is not None


def test_encounter_checks_in_a_walk_in_appointment(patient, physician):
    appt = appointment_svc.create_appointment(
        patient_id=patient.pk, provider_id=physician.pk, appointment_type='consultation',
        start_time=timezone.now().replace(microsecond=0) - timedelta(hours=2), duration=30,
    )
    encounter = admit(patient, physician, appointment_id=appt.pk, status=Encounter.STATUS_IN_PROGRESS)
    appt.refresh_from_db()
    assert appt.status == Appointment.STATUS_IN_PROGRESS
    assert appt.checked_in_at is not None

    svc.update_encounter_status(encounter.pk, Encounter.STATUS_COMPLETED, actor=physician)
    call_command('mark_no_shows', '--grace-minutes', '15')

    appt.refresh_from_db()
    assert appt.status == Appointment.STATUS_COMPLETED
    assert list(appt.transitions.order_by('pk').values_list('to_status', flat=True)) == [
        'scheduled', 'checked_in', 'in_progress', 'completed',
    ]


def test_completing_encounter_finishes_confirmed_appointment(patient, physician):
    appt = appointment_svc.create_appointment(
        patient_id=patient.pk, provider_id=physician.pk, appointment_type='follow_up',
        start_time=timezone.now() + timedelta(hours=1), duration=20,
    )
    appointment_svc.confirm_appointment(appt.pk)
    encounter = admit(patient, physician, appointment_id=appt.pk)
    svc.update_encounter_status(encounter.pk, Encounter.STATUS_IN_PROGRESS)
    svc.update_encounter_status(encounter.pk, Encounter.STATUS_COMPLETED)
    appt.refresh_from_db()
    assert appt.status == Appointment.STATUS_COMPLETED


def test_completed_appointment_cannot_be_cancelled(patient, physician, channel_layer,
                                                   django_capture_on_commit_callbacks):
    appt = appointment_svc.create_appointment(
        patient_id=patient.pk, provider_id=physician.pk, appointment_type='consultation',
        start_time=timezone.now() + timedelta(minutes=10), duration=30,
    )
    appointment_svc.check_in_appointment(appt.pk)
    encounter = admit(patient, physician, appointment_id=appt.pk, status=Encounter.STATUS_IN_PROGRESS)
    svc.update_encounter_status(encounter.pk, Encounter.STATUS_COMPLETED)

    with pytest.raises(StateConflict):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            appointment_svc.cancel_appointment(appt.pk, reason='too late')
    assert callbacks == []
    channel_layer.group_send.assert_not_awaited()
    appt.refresh_from_db()
    assert appt.status == Appointment.STATUS_COMPLETED
    assert appt.cancelled_at is None
