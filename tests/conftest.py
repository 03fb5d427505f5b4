"""Shared pytest fixtures for Faultline tests."""

import os
from datetime import timedelta
from types import SimpleNamespace

import pytest
import requests

from faultline.boundary import InterceptionBoundary
from faultline.config import FaultlineConfig
from faultline.notifiers.base import Notifier, NotifierDispatcher
from faultline.storage.database import Storage
from faultline.storage.models import ErrorContext, ErrorGroup, ErrorOccurrence, utcnow
from faultline.tracker import Tracker


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep FAULTLINE_* variables from the developer's shell out of the tests."""
    for name in list(os.environ):
        if name.startswith('FAULTLINE_'):
            monkeypatch.delenv(name, raising=False)


class RecordingNotifier(Notifier):
    """Notifier that records calls instead of making HTTP requests."""

    name = 'recording'

    def __init__(self, fail=False, **kwargs):
        super().__init__(**kwargs)
        self.fail = fail
        self.calls = []

    def send(self, group, occurrence):
        self.calls.append((group, occurrence))
        if self.fail:
            raise requests.ConnectionError('channel unreachable')
        return SimpleNamespace(status_code=200)


@pytest.fixture
def recording_notifier():
    """Factory for RecordingNotifier instances."""
    return RecordingNotifier


@pytest.fixture
def config():
    return FaultlineConfig(
        database_url='sqlite:///:memory:',
        environment='test',
        app_name='shop',
        base_url='https://errors.example.com/faultline',
        capture_uncaught=False,
    )


@pytest.fixture
def storage(config):
    """In-memory SQLite storage with all tables created."""
    storage = Storage(config.database_url)
    storage.create_all()
    yield storage
    storage.drop_all()
    storage.dispose()


@pytest.fixture
def tracker(config, storage):
    return Tracker(config, storage, dispatcher=NotifierDispatcher([]))


@pytest.fixture
def boundary(config, tracker):
    return InterceptionBoundary(config, tracker)


@pytest.fixture
def make_group(storage):
    """Persist an ErrorGroup; keyword arguments override the defaults."""
    counter = {'n': 0}

    def factory(**overrides):
        counter['n'] += 1
        now = utcnow()
        values = {
            'fingerprint': f'{counter["n"]:064x}',
            'exception_class': 'ValueError',
            'sanitized_message': 'Invalid quantity N',
            'file_path': '/srv/shop/app/orders.py',
            'line_number': 42,
            'method_name': 'place_order',
            'status': 'unresolved',
            'first_seen_at': now - timedelta(days=1),
            'last_seen_at': now,
            'occurrences_count': 1,
        }
        values.update(overrides)
        with storage.session() as session, session.begin():
            group = ErrorGroup(**values)
            session.add(group)
        return group

    return factory


@pytest.fixture
def make_occurrence(storage):
    """Persist an ErrorOccurrence for a group, with optional context entries."""

    def factory(group, contexts=None, **overrides):
        values = {
            'error_group_id': group.id,
            'exception_class': group.exception_class,
            'message': 'Invalid quantity 7',
            'backtrace': [
                '/srv/shop/app/orders.py:42:in place_order',
                '/srv/shop/app/views.py:18:in checkout',
            ],
            'environment': 'test',
            'hostname': 'web-1',
            'process_id': '4242',
            'request_method': 'POST',
            'request_url': 'https://shop.example.com/checkout',
            'ip_address': '203.0.113.9',
            'created_at': utcnow(),
        }
        values.update(overrides)
        with storage.session() as session, session.begin():
            occurrence = ErrorOccurrence(**values)
            session.add(occurrence)
            for key, value in (contexts or {}).items():
                session.add(ErrorContext(error_occurrence=occurrence, key=key, value=value))
        return occurrence

    return factory


def build_group(**overrides):
    """Transient ErrorGroup for formatting tests that never touch the database."""
    now = utcnow()
    values = {
        'id': 17,
        'fingerprint': 'a' * 64,
        'exception_class': 'ValueError',
        'sanitized_message': 'Invalid quantity N',
        'file_path': '/srv/shop/app/orders.py',
        'line_number': 42,
        'method_name': 'place_order',
        'status': 'unresolved',
        'first_seen_at': now - timedelta(days=1),
        'last_seen_at': now,
        'occurrences_count': 1,
    }
    values.update(overrides)
    return ErrorGroup(**values)


def build_occurrence(**overrides):
    values = {
        'id': 99,
        'error_group_id': 17,
        'exception_class': 'ValueError',
        'message': 'Invalid quantity 7',
        'backtrace': ['/srv/shop/app/orders.py:42:in place_order'],
        'environment': 'test',
        'hostname': 'web-1',
        'process_id': '4242',
        'request_method': 'POST',
        'request_url': 'https://shop.example.com/checkout',
        'ip_address': '203.0.113.9',
        'user_id': '7',
        'user_type': 'Customer',
        'local_variables': {'quantity': 7, 'password': '[FILTERED]'},
        'created_at': utcnow(),
    }
    values.update(overrides)
    return ErrorOccurrence(**values)


@pytest.fixture
def group_builder():
    return build_group


@pytest.fixture
def occurrence_builder():
    return build_occurrence
