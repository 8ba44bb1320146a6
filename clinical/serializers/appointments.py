import bleach
from rest_framework import serializers

from ..models import Appointment


EDIT_STATUS_CHOICES = [
    (value, label) for value, label in Appointment.STATUS_CHOICES
    if value in (Appointment.STATUS_CONFIRMED, Appointment.STATUS_CHECKED_IN)
]


def _clean(v):
    return bleach.clean((v or '').strip(), strip=True)


class AppointmentCreateSerializer(serializers.Serializer):
    patientId = serializers.UUIDField()
    providerId = serializers.IntegerField(min_value=1)
    appointmentType = serializers.ChoiceField(choices=Appointment.TYPE_CHOICES)
    startTime = serializers.DateTimeField()
    duration = serializers.IntegerField(min_value=1, max_value=24 * 60)
    department = serializers.CharField(required=False, allow_blank=True, max_length=255)
    location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    room = serializers.CharField(required=False, allow_blank=True, max_length=64)
    reasonForVisit = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=4000)

    def validate_reasonForVisit(self, v):
        return _clean(v)

    def validate_notes(self, v):
        return _clean(v)

    def to_service_kwargs(self):
        d = self.validated_data
        return {
            'patient_id': d['patientId'],
            'provider_id': d['providerId'],
            'appointment_type': d['appointmentType'],
            'start_time': d['startTime'],
            'duration': d['duration'],
            'department': d.get('department', ''),
            'location': d.get('location', ''),
            'room': d.get('room', ''),
            'reason_for_visit': d.get('reasonForVisit', ''),
            'notes': d.get('notes', ''),
        }


class AppointmentUpdateSerializer(serializers.Serializer):
    """Partial update; only the keys present in the body are applied."""
    FIELD_MAP = {
        'patientId': 'patient_id',
        'providerId': 'provider_id',
        'appointmentType': 'appointment_type',
        'startTime': 'start_time',
        'duration': 'duration',
        'status': 'status',
        'department': 'department',
        'location': 'location',
        'room': 'room',
        'reasonForVisit': 'reason_for_visit',
        'notes': 'notes',
    }

    patientId = serializers.UUIDField(required=False)
    providerId = serializers.IntegerField(required=False, min_value=1)
    appointmentType = serializers.ChoiceField(choices=Appointment.TYPE_CHOICES, required=False)
    startTime = serializers.DateTimeField(required=False)
    duration = serializers.IntegerField(required=False, min_value=1, max_value=24 * 60)
    # cancel, no-show and completion go through their own endpoints
    status = serializers.ChoiceField(choices=EDIT_STATUS_CHOICES, required=False)
    department = serializers.CharField(required=False, allow_blank=True, max_length=255)
    location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    room = serializers.CharField(required=False, allow_blank=True, max_length=64)
    reasonForVisit = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=4000)

    def validate_reasonForVisit(self, v):
        return _clean(v)

    def validate_notes(self, v):
        return _clean(v)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('no changes supplied')
        return attrs

    def to_service_kwargs(self):
        return {self.FIELD_MAP[k]: v for k, v in self.validated_data.items()}


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=1000)

    def validate_reason(self, v):
        return _clean(v)


class AppointmentListQuerySerializer(serializers.Serializer):
    patientId = serializers.UUIDField(required=False)
    providerId = serializers.IntegerField(required=False, min_value=1)
    status = serializers.ChoiceField(choices=Appointment.STATUS_CHOICES, required=False)
    date = serializers.DateField(required=False)
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=100)


class AvailabilityQuerySerializer(serializers.Serializer):
    date = serializers.DateField()
