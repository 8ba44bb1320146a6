"""
URL mappings for the scheduling and encounter API.

Identifiers are captured as plain strings so that a malformed id is
reported by the services as a missing entity, with the same error
envelope as an unknown one.  Trailing slashes are omitted.
"""
from django.urls import path, include

from .views import health
from .views.appointments import (
    appointments,
    appointment_detail,
    appointment_confirm,
    appointment_check_in,
    appointment_start,
    appointment_cancel,
    appointment_no_show,
    appointment_reminder_sent,
    provider_availability,
)
from .views.encounters import (
    encounters,
    encounter_detail,
    encounter_status,
    encounter_notes,
    encounter_diagnoses,
    encounter_vitals,
)


urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Appointments
    path('api/appointments', appointments, name='appointments'),
    path('api/appointments/<str:appointment_id>', appointment_detail, name='appointment-detail'),
    path('api/appointments/<str:appointment_id>/confirm', appointment_confirm, name='appointment-confirm'),
    path('api/appointments/<str:appointment_id>/check-in', appointment_check_in, name='appointment-check-in'),
    path('api/appointments/<str:appointment_id>/start', appointment_start, name='appointment-start'),
    path('api/appointments/<str:appointment_id>/cancel', appointment_cancel, name='appointment-cancel'),
    path('api/appointments/<str:appointment_id>/no-show', appointment_no_show, name='appointment-no-show'),
    path('api/appointments/<str:appointment_id>/reminder-sent', appointment_reminder_sent, name='appointment-reminder-sent'),
    path('api/providers/<str:provider_id>/availability', provider_availability, name='provider-availability'),
    # Encounters
    path('api/encounters', encounters, name='encounters'),
    path('api/encounters/<str:encounter_id>', encounter_detail, name='encounter-detail'),
    path('api/encounters/<str:encounter_id>/status', encounter_status, name='encounter-status'),
    path('api/encounters/<str:encounter_id>/notes', encounter_notes, name='encounter-notes'),
    path('api/encounters/<str:encounter_id>/diagnoses', encounter_diagnoses, name='encounter-diagnoses'),
    path('api/encounters/<str:encounter_id>/vitals', encounter_vitals, name='encounter-vitals'),
]
