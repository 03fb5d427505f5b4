"""Tests for the module-level API and the agent."""

import logging
from unittest.mock import patch

import pytest
from sqlalchemy import select

import faultline
from faultline.integrations.log_handler import FaultlineLoggingHandler, configure_logging
from faultline.notifiers import SlackNotifier, WebhookNotifier
from faultline.storage.models import ErrorContext, ErrorGroup, ErrorOccurrence


class SyncFailed(Exception):
    pass


def _raised(message='sync failed for account 12'):
    try:
        raise SyncFailed(message)
    except SyncFailed as e:
        return e


@pytest.fixture
def agent():
    agent = faultline.init(
        database_url='sqlite:///:memory:',
        environment='test',
        capture_uncaught=False,
        github_repo='acme/shop',
        github_token='ghp_secret',
    )
    yield agent
    faultline.shutdown()


def _occurrences(agent):
    with agent.storage.session() as session:
        return list(session.scalars(select(ErrorOccurrence)))


def test_api_is_inert_before_init():
    assert not faultline.is_initialized()
    assert faultline.get_agent() is None
    assert faultline.track(_raised()) is None
    assert faultline.report(_raised()) is None
    assert faultline.create_issue(1).error_kind == 'not_configured'


def test_init_starts_agent_once(agent):
    assert faultline.is_initialized()
    assert faultline.get_agent() is agent
    assert agent.started
    assert faultline.init(database_url='sqlite:///:memory:') is agent


def test_disabled_config_does_not_start():
    assert faultline.init(database_url='sqlite:///:memory:', enabled=False) is None
    assert not faultline.is_initialized()


def test_shutdown_resets_state(agent):
    faultline.shutdown()

    assert not faultline.is_initialized()
    assert not agent.started


def test_track_with_context(agent):
    occurrence = faultline.track(_raised(), context={'job': 'nightly-sync'})

    assert occurrence is not None
    with agent.storage.session() as session:
        contexts = session.scalars(select(ErrorContext).where(ErrorContext.error_occurrence_id == occurrence.id))
        assert {c.key: c.value for c in contexts} == {'job': 'nightly-sync'}


def test_report_records_metadata(agent):
    occurrence = faultline.report(_raised(), handled=True, severity='warning', source='billing')

    with agent.storage.session() as session:
        contexts = {c.key: c.value for c in session.get(ErrorOccurrence, occurrence.id).contexts}
    assert contexts == {'handled': 'true', 'severity': 'warning', 'source': 'billing'}


def test_report_skips_ignored_classes(agent):
    agent.config.ignored_exceptions.append('SyncFailed')

    assert faultline.report(_raised()) is None
    assert _occurrences(agent) == []


def test_uncaught_hooks_follow_config():
    import sys

    original = sys.excepthook
    agent = faultline.init(database_url='sqlite:///:memory:', capture_uncaught=True)
    try:
        assert sys.excepthook != original
    finally:
        faultline.shutdown()
    assert sys.excepthook is original


def test_channels_passed_to_init_use_the_agent_config():
    slack = SlackNotifier('https://hooks.slack.com/services/T/B/X')
    pinned = WebhookNotifier('https://hooks.example.com/errors', timeout=(0.5, 0.5), app_name='billing')
    config = faultline.FaultlineConfig(
        database_url='sqlite:///:memory:',
        capture_uncaught=False,
        app_name='shop',
        reopen_window=5,
        connect_timeout=1,
        read_timeout=2,
        base_url='https://errors.example.com/faultline',
        notifiers=[slack, pinned],
    )
    faultline.init(config)
    try:
        assert slack.config is config
        assert slack.app_name == 'shop'
        assert slack.timeout == (1.0, 2.0)
        assert slack.reopen_window == 5
        assert pinned.timeout == (0.5, 0.5)
        assert pinned.app_name == 'billing'
        assert pinned.reopen_window == 5
    finally:
        faultline.shutdown()


def test_create_issue_for_group(agent):
    occurrence = faultline.track(_raised())

    with patch('faultline.issues.requests.post') as mock_post:
        mock_post.return_value.status_code = 201
        mock_post.return_value.json.return_value = {'number': 7, 'html_url': 'https://github.com/acme/shop/issues/7'}
        result = faultline.create_issue(occurrence.error_group_id)

    assert result.success
    assert result.issue_number == 7
    body = mock_post.call_args.kwargs['json']['body']
    assert 'SyncFailed' in body
    assert '## Stack Trace' in body


def test_create_issue_for_missing_group(agent):
    result = faultline.create_issue(404)

    assert not result.success
    assert result.error_kind == 'not_found'


def test_logging_handler_reports_exc_info_records(agent):
    logger = logging.getLogger('shop.billing')
    handler = FaultlineLoggingHandler()
    logger.addHandler(handler)
    try:
        try:
            raise SyncFailed('charge 991 failed')
        except SyncFailed:
            logger.exception('Charge failed')
        logger.error('No exception attached')
    finally:
        logger.removeHandler(handler)

    occurrences = _occurrences(agent)
    assert len(occurrences) == 1
    with agent.storage.session() as session:
        contexts = {c.key: c.value for c in session.get(ErrorOccurrence, occurrences[0].id).contexts}
    assert contexts['source'] == 'shop.billing'
    assert contexts['severity'] == 'error'
    assert contexts['log_message'] == 'Charge failed'


def test_logging_handler_skips_faultline_loggers(agent):
    handler = FaultlineLoggingHandler()
    record = logging.LogRecord('faultline.tracker', logging.ERROR, __file__, 1, 'failed', None, None)
    try:
        raise SyncFailed('inner')
    except SyncFailed:
        import sys
        record.exc_info = sys.exc_info()

    handler.emit(record)

    assert _occurrences(agent) == []


def test_logging_config_dict():
    config = configure_logging()

    assert config['handlers']['faultline']['class'] == 'faultline.integrations.log_handler.FaultlineLoggingHandler'
    assert config['root']['handlers'] == ['faultline']


def test_group_counts_accumulate_through_the_api(agent):
    faultline.track(_raised('sync failed for account 12'))
    faultline.track(_raised('sync failed for account 13'))

    with agent.storage.session() as session:
        group = session.scalars(select(ErrorGroup)).one()
        assert group.occurrences_count == 2
