"""
Domain events published after committed scheduling/encounter changes.

Each event kind is its own frozen dataclass; ids and timestamps are only
turned into strings by :meth:`ClinicalEvent.to_payload` at the publish
boundary.  Delivery goes through the Channels layer: every event is
sent to the group named after its subject (``appointment.cancelled``)
and to the ``clinical.events`` firehose that WebSocket subscribers join.

Publishing is best effort.  A missing channel layer, a disabled feed or
a transport failure is logged and never reaches the caller; the state
change it describes has already been committed.
"""
from __future__ import annotations

import dataclasses
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import transaction

logger = logging.getLogger(__name__)

FIREHOSE_GROUP = 'clinical.events'


def _plain(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class ClinicalEvent:
    subject: ClassVar[str] = ''

    def to_payload(self) -> dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in dataclasses.fields(self)}


@dataclass(frozen=True)
class AppointmentBooked(ClinicalEvent):
    subject: ClassVar[str] = 'appointment.booked'
    appointment_id: uuid.UUID
    appointment_number: str
    patient_id: uuid.UUID
    provider_id: int
    start_time: datetime
    end_time: datetime
    created_by: Optional[int] = None


@dataclass(frozen=True)
class AppointmentCheckedIn(ClinicalEvent):
    subject: ClassVar[str] = 'appointment.checked_in'
    appointment_id: uuid.UUID
    patient_id: uuid.UUID
    provider_id: int
    checked_in_at: datetime


@dataclass(frozen=True)
class AppointmentCancelled(ClinicalEvent):
    subject: ClassVar[str] = 'appointment.cancelled'
    appointment_id: uuid.UUID
    patient_id: uuid.UUID
    provider_id: int
    reason: str
    cancelled_by: Optional[int] = None


@dataclass(frozen=True)
class EncounterCreated(ClinicalEvent):
    subject: ClassVar[str] = 'encounter.created'
    encounter_id: uuid.UUID
    encounter_number: str
    patient_id: uuid.UUID
    provider_id: int
    created_by: Optional[int] = None


@dataclass(frozen=True)
class EncounterStatusChanged(ClinicalEvent):
    subject: ClassVar[str] = 'encounter.status_changed'
    encounter_id: uuid.UUID
    status: str
    updated_by: Optional[int] = None


def _send(event: ClinicalEvent) -> None:
    try:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            logger.debug("no channel layer configured; dropping %s", event.subject)
            return
        message = {
            'type': 'clinical.event',
            'subject': event.subject,
            'data': event.to_payload(),
        }
        send = async_to_sync(channel_layer.group_send)
        send(event.subject, message)
        send(FIREHOSE_GROUP, message)
    except Exception:
        logger.exception("failed to publish %s", event.subject)


def publish(event: ClinicalEvent) -> None:
    """Queue ``event`` for delivery once the current transaction commits."""
    if not getattr(settings, 'EVENTS_ENABLED', True):
        return
    transaction.on_commit(lambda: _send(event))
