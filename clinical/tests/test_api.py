"""
Integration tests for the scheduling and encounter API.

These tests exercise booking with conflict protection, availability,
cancellation, the encounter lifecycle and the error envelope.  The
tests use Django REST Framework's APIClient within the APITestCase base
class; events are captured by patching the channel layer and running
``on_commit`` callbacks explicitly.

To run the tests:

```
pytest -q clinical/tests
```
"""
from datetime import datetime, timezone as dt_timezone
from unittest import mock

from django.test import override_settings
from rest_framework.test import APITestCase, APIClient
from rest_framework import status

from ..models import Appointment, AppointmentTransition, Encounter, Patient, User
from ..services.events import FIREHOSE_GROUP

DAY = '2030-03-04'


def at(hour: int, minute: int = 0) -> str:
    return datetime(2030, 3, 4, hour, minute, tzinfo=dt_timezone.utc).isoformat()


@override_settings(
    TIME_ZONE='UTC',
    EVENTS_ENABLED=True,
    SCHEDULING={'WORKDAY_START': '08:00', 'WORKDAY_END': '17:00', 'SLOT_MINUTES': 30, 'NO_SHOW_GRACE_MINUTES': 15},
)
class SchedulingAPITests(APITestCase):
    def setUp(self) -> None:
        """Staff accounts, one patient and a fake channel layer."""
        self.receptionist = User.objects.create_user(username="front1", password="x", role="receptionist")
        self.physician = User.objects.create_user(
            username="drsmith", password="x", role="physician", department="Cardiology",
        )
        self.nurse = User.objects.create_user(username="nurse1", password="x", role="nurse")
        self.patient = Patient.objects.create(mrn="MRN0001", first_name="Ada", last_name="Lovelace")

        self.layer = mock.MagicMock()
        self.layer.group_send = mock.AsyncMock()
        patcher = mock.patch('clinical.services.events.get_channel_layer', return_value=self.layer)
        patcher.start()
        self.addCleanup(patcher.stop)

    def authenticate(self, user: User) -> APIClient:
        """Return an authenticated APIClient for the given user."""
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    def published(self) -> list[str]:
        return [
            call.args[1]['subject']
            for call in self.layer.group_send.await_args_list
            if call.args[0] == FIREHOSE_GROUP
        ]

    def book(self, client, start, duration=30, **extra):
        body = {
            'patientId': str(self.patient.pk),
            'providerId': self.physician.pk,
            'appointmentType': 'consultation',
            'startTime': start,
            'duration': duration,
        }
        body.update(extra)
        with self.captureOnCommitCallbacks(execute=True):
            return client.post('/api/appointments', body, format='json')

    def test_book_appointment_in_free_slot(self):
        client = self.authenticate(self.receptionist)
        response = self.book(client, at(9), reasonForVisit='chest pain')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'scheduled')
        self.assertEqual(response.data['duration'], 30)
        self.assertEqual(response.data['startTime'], at(9))
        self.assertEqual(response.data['endTime'], at(9, 30))
        # provider's department is used when none is given
        self.assertEqual(response.data['department'], 'Cardiology')
        self.assertEqual(self.published(), ['appointment.booked'])

        appt = Appointment.objects.get(pk=response.data['id'])
        self.assertEqual(appt.created_by, self.receptionist)
        self.assertTrue(AppointmentTransition.objects.filter(appointment=appt, to_status='scheduled').exists())

    def test_overlapping_booking_is_rejected(self):
        client = self.authenticate(self.receptionist)
        first = self.book(client, at(9))
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)

        response = self.book(client, at(9, 15))
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(response.data['ok'])
        self.assertEqual(response.data['error']['code'], 'booking_conflict')
        details = response.data['error']['details']
        self.assertEqual(details['providerId'], str(self.physician.pk))
        self.assertEqual(details['conflictingAppointments'], [first.data['appointmentNumber']])
        self.assertEqual(Appointment.objects.count(), 1)
        self.assertEqual(self.published(), ['appointment.booked'])

    def test_back_to_back_booking_is_admitted(self):
        client = self.authenticate(self.receptionist)
        self.assertEqual(self.book(client, at(9)).status_code, status.HTTP_201_CREATED)
        self.assertEqual(self.book(client, at(9, 30)).status_code, status.HTTP_201_CREATED)
        self.assertEqual(self.book(client, at(8, 30)).status_code, status.HTTP_201_CREATED)

    def test_other_provider_is_not_blocked(self):
        client = self.authenticate(self.receptionist)
        self.assertEqual(self.book(client, at(9)).status_code, status.HTTP_201_CREATED)
        response = self.book(client, at(9), providerId=self.nurse.pk)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_availability_marks_booked_slot(self):
        client = self.authenticate(self.receptionist)
        self.book(client, at(9))
        response = client.get(f'/api/providers/{self.physician.pk}/availability', {'date': DAY})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        slots = response.data['slots']
        self.assertEqual(len(slots), 18)
        self.assertEqual(slots[0]['startTime'], at(8))
        self.assertEqual(slots[-1]['endTime'], at(17))
        busy = [s['startTime'] for s in slots if not s['available']]
        self.assertEqual(busy, [at(9)])

    def test_availability_for_unknown_provider(self):
        client = self.authenticate(self.receptionist)
        response = client.get(f'/api/providers/{self.receptionist.pk}/availability', {'date': DAY})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error']['code'], 'not_found')
        self.assertEqual(response.data['error']['details']['entity'], 'provider')

    def test_cancel_frees_the_slot_and_is_not_repeatable(self):
        client = self.authenticate(self.receptionist)
        booked = self.book(client, at(9))
        url = f"/api/appointments/{booked.data['id']}/cancel"

        with self.captureOnCommitCallbacks(execute=True):
            response = client.post(url, {'reason': 'patient request'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'cancelled')
        self.assertEqual(response.data['cancellationReason'], 'patient request')
        self.assertIsNotNone(response.data['cancelledAt'])

        with self.captureOnCommitCallbacks(execute=True):
            again = client.post(url, {}, format='json')
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.data['error']['code'], 'state_conflict')
        self.assertEqual(again.data['error']['details']['currentStatus'], 'cancelled')
        self.assertEqual(self.published(), ['appointment.booked', 'appointment.cancelled'])

        slots = client.get(f'/api/providers/{self.physician.pk}/availability', {'date': DAY}).data['slots']
        self.assertTrue(all(s['available'] for s in slots))
        self.assertEqual(self.book(client, at(9)).status_code, status.HTTP_201_CREATED)

    def test_reschedule_does_not_conflict_with_itself(self):
        client = self.authenticate(self.receptionist)
        booked = self.book(client, at(9))
        response = client.patch(f"/api/appointments/{booked.data['id']}", {'duration': 45}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['duration'], 45)
        self.assertEqual(response.data['endTime'], at(9, 45))

    def test_reschedule_onto_another_booking_is_rejected(self):
        client = self.authenticate(self.receptionist)
        self.book(client, at(10))
        booked = self.book(client, at(9))
        response = client.patch(f"/api/appointments/{booked.data['id']}", {'startTime': at(9, 45)}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        appt = Appointment.objects.get(pk=booked.data['id'])
        self.assertEqual(appt.start_time.isoformat(), at(9))

    def test_edit_cannot_mark_no_show_or_complete(self):
        client = self.authenticate(self.receptionist)
        booked = self.book(client, at(9))
        for target in ('no_show', 'completed', 'cancelled'):
            response = client.patch(f"/api/appointments/{booked.data['id']}", {'status': target}, format='json')
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertEqual(response.data['error']['code'], 'validation_error')
        self.assertEqual(Appointment.objects.get(pk=booked.data['id']).status, 'scheduled')

        response = client.patch(f"/api/appointments/{booked.data['id']}", {'status': 'confirmed'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'confirmed')

    def test_detail_includes_transition_history(self):
        client = self.authenticate(self.receptionist)
        booked = self.book(client, at(9))
        client.post(f"/api/appointments/{booked.data['id']}/confirm")
        response = client.get(f"/api/appointments/{booked.data['id']}")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'confirmed')
        self.assertEqual(
            [(t['from'], t['to']) for t in response.data['transitionHistory']],
            [(None, 'scheduled'), ('scheduled', 'confirmed')],
        )

    def test_list_appointments_for_day(self):
        client = self.authenticate(self.receptionist)
        self.book(client, at(11))
        self.book(client, at(9))
        response = client.get('/api/appointments', {'providerId': self.physician.pk, 'date': DAY})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 2)
        self.assertEqual([a['startTime'] for a in response.data['items']], [at(9), at(11)])

    def test_unknown_appointment_uses_error_envelope(self):
        client = self.authenticate(self.receptionist)
        response = client.get('/api/appointments/not-a-uuid')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(
            response.data,
            {
                'ok': False,
                'error': {
                    'code': 'not_found',
                    'message': 'appointment not-a-uuid not found',
                    'details': {'entity': 'appointment', 'id': 'not-a-uuid'},
                },
            },
        )

    def test_invalid_body_is_validation_error(self):
        client = self.authenticate(self.receptionist)
        response = self.book(client, at(9), duration=0)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['code'], 'validation_error')
        self.assertIn('duration', response.data['error']['details'])

    def test_requires_authentication(self):
        response = APIClient().get('/api/appointments')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.data['ok'])

    def test_publish_failure_does_not_undo_booking(self):
        self.layer.group_send.side_effect = ConnectionError("redis down")
        client = self.authenticate(self.receptionist)
        with self.assertLogs('clinical.services.events', level='ERROR'):
            response = self.book(client, at(9))
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(Appointment.objects.filter(pk=response.data['id']).exists())

    def test_encounter_drives_linked_appointment(self):
        front = self.authenticate(self.receptionist)
        booked = self.book(front, at(9))
        appt_id = booked.data['id']
        with self.captureOnCommitCallbacks(execute=True):
            checked_in = front.post(f'/api/appointments/{appt_id}/check-in')
        self.assertEqual(checked_in.data['status'], 'checked_in')
        self.assertIsNotNone(checked_in.data['checkedInAt'])

        doctor = self.authenticate(self.physician)
        with self.captureOnCommitCallbacks(execute=True):
            opened = doctor.post('/api/encounters', {
                'patientId': str(self.patient.pk),
                'providerId': self.physician.pk,
                'appointmentId': appt_id,
                'encounterType': 'outpatient',
                'status': 'in_progress',
                'admissionTime': '2020-01-01T09:00:00Z',
                'chiefComplaint': 'chest pain',
            }, format='json')
        self.assertEqual(opened.status_code, status.HTTP_201_CREATED)
        encounter_id = opened.data['id']
        self.assertEqual(Appointment.objects.get(pk=appt_id).status, 'in_progress')

        with self.captureOnCommitCallbacks(execute=True):
            done = doctor.post(f'/api/encounters/{encounter_id}/status', {'status': 'completed'}, format='json')
        self.assertEqual(done.status_code, status.HTTP_200_OK)
        self.assertEqual(done.data['status'], 'completed')
        self.assertIsNotNone(done.data['dischargeTime'])
        self.assertEqual(Appointment.objects.get(pk=appt_id).status, 'completed')

        again = doctor.post(f'/api/encounters/{encounter_id}/status', {'status': 'completed'}, format='json')
        self.assertEqual(again.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(again.data['error']['code'], 'invalid_transition')
        self.assertEqual(
            self.published(),
            ['appointment.booked', 'appointment.checked_in', 'encounter.created', 'encounter.status_changed'],
        )

    def test_receptionist_cannot_open_encounter(self):
        client = self.authenticate(self.receptionist)
        response = client.post('/api/encounters', {
            'patientId': str(self.patient.pk),
            'providerId': self.physician.pk,
            'encounterType': 'outpatient',
            'admissionTime': at(9),
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(Encounter.objects.count(), 0)

    def test_vitals_and_notes_are_attached_to_encounter(self):
        nurse = self.authenticate(self.nurse)
        opened = nurse.post('/api/encounters', {
            'patientId': str(self.patient.pk),
            'providerId': self.physician.pk,
            'encounterType': 'outpatient',
            'admissionTime': '2020-01-01T09:00:00Z',
        }, format='json')
        encounter_id = opened.data['id']

        vitals = nurse.post(f'/api/encounters/{encounter_id}/vitals', {
            'weight': 70, 'height': 175, 'heartRate': 72,
        }, format='json')
        self.assertEqual(vitals.status_code, status.HTTP_201_CREATED)
        self.assertEqual(vitals.data['bmi'], 22.9)
        self.assertEqual(vitals.data['recordedBy'], self.nurse.pk)

        note = nurse.post(f'/api/encounters/{encounter_id}/notes', {
            'noteType': 'progress', 'content': 'resting comfortably',
        }, format='json')
        self.assertEqual(note.status_code, status.HTTP_201_CREATED)

        detail = nurse.get(f'/api/encounters/{encounter_id}')
        self.assertEqual(len(detail.data['vitalSigns']), 1)
        self.assertEqual(detail.data['clinicalNotes'][0]['content'], 'resting comfortably')
        self.assertEqual(detail.data['diagnoses'], [])
