"""
Typed failures raised by the scheduling and encounter services.

All of them are DRF ``APIException`` subclasses so that the transport
layer can render them without a translation table; the shared
``details`` payload carries the context a caller needs to react (which
entity was missing, which interval collided, which status blocked the
operation).
"""
from __future__ import annotations

from typing import Any, Optional

from rest_framework import status
from rest_framework.exceptions import APIException


class ClinicalError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'request could not be processed'
    default_code = 'clinical_error'

    def __init__(self, detail: Optional[str] = None, *, details: Optional[dict[str, Any]] = None):
        super().__init__(detail=detail or self.default_detail, code=self.default_code)
        self.details = details or {}


class EntityNotFound(ClinicalError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'resource not found'
    default_code = 'not_found'

    def __init__(self, entity: str, identifier: Any):
        super().__init__(
            f'{entity} {identifier} not found',
            details={'entity': entity, 'id': str(identifier)},
        )
        self.entity = entity
        self.identifier = identifier


class BookingConflict(ClinicalError):
    """The requested interval overlaps a live booking of the provider."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'appointment slot is not available'
    default_code = 'booking_conflict'

    def __init__(self, provider_id: Any, start, end, conflicting: Optional[list[str]] = None):
        super().__init__(
            f'provider {provider_id} is already booked between {start.isoformat()} and {end.isoformat()}',
            details={
                'providerId': str(provider_id),
                'start': start.isoformat(),
                'end': end.isoformat(),
                'conflictingAppointments': conflicting or [],
            },
        )
        self.provider_id = provider_id
        self.start = start
        self.end = end


class ValidationFailed(ClinicalError):
    default_detail = 'invalid input'
    default_code = 'validation_error'


class InvalidTransition(ValidationFailed):
    """Status change not permitted by the encounter state graph."""
    default_code = 'invalid_transition'

    def __init__(self, current: str, requested: str, detail: Optional[str] = None):
        super().__init__(
            detail or f'cannot move from {current} to {requested}',
            details={'currentStatus': current, 'requestedStatus': requested},
        )
        self.current = current
        self.requested = requested


class StateConflict(ClinicalError):
    """Operation is not valid for the appointment's current lifecycle state."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'operation not allowed in current state'
    default_code = 'state_conflict'

    def __init__(self, operation: str, current: str, detail: Optional[str] = None):
        super().__init__(
            detail or f'cannot {operation} an appointment that is {current}',
            details={'operation': operation, 'currentStatus': current},
        )
        self.operation = operation
        self.current = current


class InternalError(ClinicalError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'internal server error'
    default_code = 'internal_error'
