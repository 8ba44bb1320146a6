import bleach
from rest_framework import serializers

from ..models import ClinicalNote, Diagnosis, Encounter


def _clean(v):
    return bleach.clean((v or '').strip(), strip=True)


class EncounterCreateSerializer(serializers.Serializer):
    patientId = serializers.UUIDField()
    providerId = serializers.IntegerField(min_value=1)
    appointmentId = serializers.UUIDField(required=False, allow_null=True)
    encounterType = serializers.ChoiceField(choices=Encounter.TYPE_CHOICES)
    priority = serializers.ChoiceField(choices=Encounter.PRIORITY_CHOICES, required=False)
    status = serializers.ChoiceField(
        choices=[Encounter.STATUS_SCHEDULED, Encounter.STATUS_IN_PROGRESS], required=False,
    )
    admissionTime = serializers.DateTimeField()
    department = serializers.CharField(required=False, allow_blank=True, max_length=255)
    location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    chiefComplaint = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    reasonForVisit = serializers.CharField(required=False, allow_blank=True, max_length=2000)

    def validate_chiefComplaint(self, v):
        return _clean(v)

    def validate_reasonForVisit(self, v):
        return _clean(v)

    def to_service_kwargs(self):
        d = self.validated_data
        return {
            'patient_id': d['patientId'],
            'provider_id': d['providerId'],
            'appointment_id': d.get('appointmentId'),
            'encounter_type': d['encounterType'],
            'priority': d.get('priority') or Encounter.PRIORITY_ROUTINE,
            'status': d.get('status') or Encounter.STATUS_SCHEDULED,
            'admission_time': d['admissionTime'],
            'department': d.get('department', ''),
            'location': d.get('location', ''),
            'chief_complaint': d.get('chiefComplaint', ''),
            'reason_for_visit': d.get('reasonForVisit', ''),
        }


class EncounterStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Encounter.STATUS_CHOICES)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate_reason(self, v):
        return _clean(v)


class EncounterListQuerySerializer(serializers.Serializer):
    patientId = serializers.UUIDField(required=False)
    providerId = serializers.IntegerField(required=False, min_value=1)
    status = serializers.ChoiceField(choices=Encounter.STATUS_CHOICES, required=False)
    page = serializers.IntegerField(required=False, min_value=1)
    pageSize = serializers.IntegerField(required=False, min_value=1, max_value=100)


class ClinicalNoteSerializer(serializers.Serializer):
    noteType = serializers.ChoiceField(choices=ClinicalNote.NOTE_TYPE_CHOICES)
    subjective = serializers.CharField(required=False, allow_blank=True)
    objective = serializers.CharField(required=False, allow_blank=True)
    assessment = serializers.CharField(required=False, allow_blank=True)
    plan = serializers.CharField(required=False, allow_blank=True)
    content = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        for key in ('subjective', 'objective', 'assessment', 'plan', 'content'):
            if key in attrs:
                attrs[key] = _clean(attrs[key])
        if not any(attrs.get(k) for k in ('subjective', 'objective', 'assessment', 'plan', 'content')):
            raise serializers.ValidationError('note has no content')
        return attrs

    def to_service_kwargs(self):
        d = dict(self.validated_data)
        d['note_type'] = d.pop('noteType')
        return d


class DiagnosisSerializer(serializers.Serializer):
    icd10Code = serializers.RegexField(r'^[A-Za-z][0-9][0-9A-Za-z](\.[0-9A-Za-z]{1,4})?$', max_length=16)
    description = serializers.CharField(max_length=500)
    diagnosisType = serializers.ChoiceField(choices=Diagnosis.DIAGNOSIS_TYPE_CHOICES)
    onsetDate = serializers.DateField(required=False, allow_null=True)
    severity = serializers.CharField(required=False, allow_blank=True, max_length=50)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_description(self, v):
        return _clean(v)

    def validate_notes(self, v):
        return _clean(v)

    def to_service_kwargs(self):
        d = self.validated_data
        return {
            'icd10_code': d['icd10Code'],
            'description': d['description'],
            'diagnosis_type': d['diagnosisType'],
            'onset_date': d.get('onsetDate'),
            'severity': d.get('severity', ''),
            'notes': d.get('notes', ''),
        }


class VitalSignsSerializer(serializers.Serializer):
    FIELD_MAP = {
        'temperature': 'temperature',
        'temperatureUnit': 'temperature_unit',
        'heartRate': 'heart_rate',
        'respiratoryRate': 'respiratory_rate',
        'bloodPressureSystolic': 'blood_pressure_systolic',
        'bloodPressureDiastolic': 'blood_pressure_diastolic',
        'oxygenSaturation': 'oxygen_saturation',
        'weight': 'weight',
        'height': 'height',
        'pain': 'pain',
        'notes': 'notes',
    }

    measuredAt = serializers.DateTimeField(required=False)
    temperature = serializers.FloatField(required=False, min_value=25, max_value=115)
    temperatureUnit = serializers.ChoiceField(choices=['C', 'F'], required=False)
    heartRate = serializers.IntegerField(required=False, min_value=0, max_value=300)
    respiratoryRate = serializers.IntegerField(required=False, min_value=0, max_value=100)
    bloodPressureSystolic = serializers.IntegerField(required=False, min_value=0, max_value=300)
    bloodPressureDiastolic = serializers.IntegerField(required=False, min_value=0, max_value=200)
    oxygenSaturation = serializers.FloatField(required=False, min_value=0, max_value=100)
    weight = serializers.FloatField(required=False, min_value=0, help_text='kg')
    height = serializers.FloatField(required=False, min_value=0, help_text='cm')
    pain = serializers.IntegerField(required=False, min_value=0, max_value=10)
    notes = serializers.CharField(required=False, allow_blank=True)

    def validate_notes(self, v):
        return _clean(v)

    def to_service_kwargs(self):
        d = self.validated_data
        kwargs = {self.FIELD_MAP[k]: v for k, v in d.items() if k in self.FIELD_MAP}
        if d.get('measuredAt'):
            kwargs['measured_at'] = d['measuredAt']
        return kwargs
