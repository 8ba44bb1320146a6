"""
Appointment booking and lifecycle endpoints.

Views only parse input and render output; all state changes go through
:mod:`clinical.services.appointments`, whose typed errors are rendered
by the project exception handler.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import IsStaffRole
from ..serializers.appointments import (
    AppointmentCreateSerializer,
    AppointmentListQuerySerializer,
    AppointmentUpdateSerializer,
    AvailabilityQuerySerializer,
    CancelSerializer,
)
from ..services import appointments as svc
from ..services.availability import get_availability


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def appointments(request):
    """List appointments (``GET``) or book a new one (``POST``)."""
    if request.method == 'POST':
        s = AppointmentCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        appt = svc.create_appointment(actor=request.user, **s.to_service_kwargs())
        return Response(svc.format_appointment(appt), status=status.HTTP_201_CREATED)

    q = AppointmentListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    d = q.validated_data
    page = d.get('page') or 1
    page_size = d.get('pageSize') or 20
    items, total = svc.list_appointments(
        patient_id=d.get('patientId'),
        provider_id=d.get('providerId'),
        status=d.get('status'),
        day=d.get('date'),
        page=page,
        page_size=page_size,
    )
    return Response({
        'items': [svc.format_appointment(a) for a in items],
        'total': total,
        'page': page,
        'pageSize': page_size,
    })


@api_view(['GET', 'PATCH'])
@permission_classes([IsAuthenticated, IsStaffRole])
def appointment_detail(request, appointment_id: str):
    if request.method == 'PATCH':
        s = AppointmentUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        appt = svc.update_appointment(appointment_id, actor=request.user, **s.to_service_kwargs())
        return Response(svc.format_appointment(appt))
    appt = svc.get_appointment(appointment_id)
    data = svc.format_appointment(appt)
    data['transitionHistory'] = [
        {
            'from': t.from_status,
            'to': t.to_status,
            'operator': t.operator.username if t.operator else '',
            'timestamp': t.timestamp.isoformat(),
            'reason': t.reason,
        }
        for t in appt.transitions.select_related('operator').order_by('timestamp', 'id')
    ]
    return Response(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def appointment_confirm(request, appointment_id: str):
    appt = svc.confirm_appointment(appointment_id, actor=request.user)
    return Response(svc.format_appointment(appt))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def appointment_check_in(request, appointment_id: str):
    appt = svc.check_in_appointment(appointment_id, actor=request.user)
    return Response(svc.format_appointment(appt))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def appointment_start(request, appointment_id: str):
    appt = svc.start_appointment(appointment_id, actor=request.user)
    return Response(svc.format_appointment(appt))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def appointment_cancel(request, appointment_id: str):
    s = CancelSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    appt = svc.cancel_appointment(appointment_id, reason=s.validated_data.get('reason', ''), actor=request.user)
    return Response(svc.format_appointment(appt))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def appointment_no_show(request, appointment_id: str):
    appt = svc.mark_no_show(appointment_id, actor=request.user)
    return Response(svc.format_appointment(appt))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsStaffRole])
def appointment_reminder_sent(request, appointment_id: str):
    appt = svc.mark_reminder_sent(appointment_id)
    return Response(svc.format_appointment(appt))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsStaffRole])
def provider_availability(request, provider_id: str):
    """Slots of the provider's working day, e.g. ``?date=2024-03-01``."""
    q = AvailabilityQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    day = q.validated_data['date']
    slots = get_availability(provider_id, day)
    return Response({
        'providerId': provider_id,
        'date': day.isoformat(),
        'slots': [slot.as_dict() for slot in slots],
    })
