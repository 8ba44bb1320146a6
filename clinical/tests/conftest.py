from unittest import mock

import pytest

from clinical.models import Patient, User


@pytest.fixture(autouse=True)
def scheduling_settings(settings):
    settings.TIME_ZONE = 'UTC'
    settings.EVENTS_ENABLED = True
    settings.SCHEDULING = {
        'WORKDAY_START': '08:00',
        'WORKDAY_END': '17:00',
        'SLOT_MINUTES': 30,
        'NO_SHOW_GRACE_MINUTES': 15,
    }
    return settings


@pytest.fixture
def channel_layer():
    layer = mock.MagicMock()
    layer.group_send = mock.AsyncMock()
    with mock.patch('clinical.services.events.get_channel_layer', return_value=layer):
        yield layer


@pytest.fixture
def physician(db):
    return User.objects.create_user(username='drhouse', password='x', role='physician', department='Diagnostics')


@pytest.fixture
def nurse(db):
    return User.objects.create_user(username='nurse2', password='x', role='nurse')


@pytest.fixture
def receptionist(db):
    return User.objects.create_user(username='front2', password='x', role='receptionist')


@pytest.fixture
def patient(db):
    return Patient.objects.create(mrn='MRN0100', first_name='Grace', last_name='Hopper')
