"""
Encounter endpoints: admission, status changes and clinical documentation.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import IsClinicianRole
from ..serializers.encounters import (
    ClinicalNoteSerializer,
    DiagnosisSerializer,
    EncounterCreateSerializer,
    EncounterListQuerySerializer,
    EncounterStatusSerializer,
    VitalSignsSerializer,
)
from ..services import encounters as svc


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsClinicianRole])
def encounters(request):
    if request.method == 'POST':
        s = EncounterCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        encounter = svc.create_encounter(actor=request.user, **s.to_service_kwargs())
        return Response(svc.format_encounter(encounter), status=status.HTTP_201_CREATED)

    q = EncounterListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    d = q.validated_data
    page = d.get('page') or 1
    page_size = d.get('pageSize') or 20
    items, total = svc.list_encounters(
        patient_id=d.get('patientId'),
        provider_id=d.get('providerId'),
        status=d.get('status'),
        page=page,
        page_size=page_size,
    )
    return Response({
        'items': [svc.format_encounter(e) for e in items],
        'total': total,
        'page': page,
        'pageSize': page_size,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsClinicianRole])
def encounter_detail(request, encounter_id: str):
    """Encounter with its notes, diagnoses and vital signs."""
    encounter = svc.get_encounter(encounter_id)
    return Response(svc.format_encounter(encounter, with_children=True))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicianRole])
def encounter_status(request, encounter_id: str):
    s = EncounterStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    encounter = svc.update_encounter_status(
        encounter_id,
        s.validated_data['status'],
        actor=request.user,
        reason=s.validated_data.get('reason', ''),
    )
    return Response(svc.format_encounter(encounter))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicianRole])
def encounter_notes(request, encounter_id: str):
    s = ClinicalNoteSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    note = svc.add_clinical_note(encounter_id, author=request.user, **s.to_service_kwargs())
    return Response(svc.format_note(note), status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicianRole])
def encounter_diagnoses(request, encounter_id: str):
    s = DiagnosisSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    diagnosis = svc.add_diagnosis(encounter_id, diagnosed_by=request.user, **s.to_service_kwargs())
    return Response(svc.format_diagnosis(diagnosis), status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsClinicianRole])
def encounter_vitals(request, encounter_id: str):
    s = VitalSignsSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vitals = svc.record_vital_signs(encounter_id, recorded_by=request.user, **s.to_service_kwargs())
    return Response(svc.format_vitals(vitals), status=status.HTTP_201_CREATED)
