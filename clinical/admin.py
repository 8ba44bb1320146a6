"""
Django admin registrations for the clinical models.

Appointments and encounters are read-mostly here: status changes must
go through the services so that transitions are logged and events are
published, hence ``status`` is read-only in both admins.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import (
    User,
    Patient,
    Appointment,
    AppointmentTransition,
    Encounter,
    EncounterTransition,
    ClinicalNote,
    Diagnosis,
    VitalSign,
)
from .services.audit import soft_delete


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ('username', 'role', 'department', 'is_active', 'is_superuser')
    list_filter = ('role', 'is_active')
    fieldsets = BaseUserAdmin.fieldsets + (('Clinical', {'fields': ('role', 'department')}),)


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('mrn', 'last_name', 'first_name', 'date_of_birth', 'sex')
    search_fields = ('mrn', 'last_name', 'first_name', 'phone')


class AppointmentTransitionInline(admin.TabularInline):
    model = AppointmentTransition
    extra = 0
    readonly_fields = ('from_status', 'to_status', 'operator', 'timestamp', 'reason')
    can_delete = False


@admin.register(Appointment)
class AppointmentAdmin(admin.ModelAdmin):
    list_display = ('appointment_number', 'patient', 'provider', 'start_time', 'duration', 'status')
    list_filter = ('status', 'appointment_type', 'department')
    search_fields = ('appointment_number', 'patient__mrn', 'patient__last_name', 'provider__username')
    readonly_fields = ('status', 'checked_in_at', 'cancelled_at', 'created_at', 'updated_at')
    inlines = [AppointmentTransitionInline]


class EncounterTransitionInline(admin.TabularInline):
    model = EncounterTransition
    extra = 0
    readonly_fields = ('from_status', 'to_status', 'operator', 'timestamp', 'reason')
    can_delete = False


@admin.register(Encounter)
class EncounterAdmin(admin.ModelAdmin):
    list_display = ('encounter_number', 'patient', 'provider', 'encounter_type', 'status', 'admission_time')
    list_filter = ('status', 'encounter_type', 'priority')
    search_fields = ('encounter_number', 'patient__mrn', 'patient__last_name')
    readonly_fields = ('status', 'discharge_time', 'created_at', 'updated_at')
    inlines = [EncounterTransitionInline]


@admin.action(description="Mark selected records as entered in error")
def retract(modeladmin, request, queryset):
    for obj in queryset:
        soft_delete(obj, request.user)


@admin.register(ClinicalNote)
class ClinicalNoteAdmin(admin.ModelAdmin):
    actions = [retract]
    list_display = ('encounter', 'note_type', 'author', 'created_at')
    list_filter = ('note_type',)


@admin.register(Diagnosis)
class DiagnosisAdmin(admin.ModelAdmin):
    actions = [retract]
    list_display = ('icd10_code', 'description', 'diagnosis_type', 'status', 'encounter')
    search_fields = ('icd10_code', 'description')


@admin.register(VitalSign)
class VitalSignAdmin(admin.ModelAdmin):
    list_display = ('encounter', 'measured_at', 'heart_rate', 'blood_pressure_systolic', 'bmi')
