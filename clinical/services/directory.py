"""Read-only lookups against the patient and staff directories."""
from __future__ import annotations

import uuid
from typing import Any

from django.contrib.auth import get_user_model

from clinical.errors import EntityNotFound
from clinical.models import Patient

User = get_user_model()


def parse_uuid(value: Any):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def parse_int(value: Any):
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def lookup_patient(patient_id) -> Patient:
    pk = parse_uuid(patient_id)
    patient = Patient.objects.filter(pk=pk).first() if pk else None
    if patient is None:
        raise EntityNotFound('patient', patient_id)
    return patient


def lookup_provider(provider_id) -> User:
    """Return an active user that can be booked (physician or nurse)."""
    pk = parse_int(provider_id)
    provider = None
    if pk is not None:
        provider = User.objects.filter(pk=pk, is_active=True, role__in=User.PROVIDER_ROLES).first()
    if provider is None:
        raise EntityNotFound('provider', provider_id)
    return provider


def lookup_user(user_id) -> User:
    pk = parse_int(getattr(user_id, 'pk', user_id))
    user = User.objects.filter(pk=pk, is_active=True).first() if pk is not None else None
    if user is None:
        raise EntityNotFound('user', getattr(user_id, 'pk', user_id))
    return user
