"""Tests for the local variable capture trap."""

import logging
import sys
import threading
from types import SimpleNamespace
from unittest.mock import patch

import pytest

import faultline.serializer
from faultline.exceptions.capture import CapturedFrame, CaptureScope, CaptureTrap, is_application_path


def _charge(order_total):
    discount = 'SPRING'
    _internal = 'hidden'
    raise ValueError(f'card declined for {order_total} with {discount} {_internal}')


def _fake_frame(path, line=10, name='handler', local_vars=None):
    return SimpleNamespace(
        f_code=SimpleNamespace(co_filename=path, co_name=name),
        f_lineno=line,
        f_locals=dict(local_vars or {}),
    )


@pytest.mark.parametrize('path', [
    '/usr/lib/python3.12/site-packages/requests/sessions.py',
    '/home/deploy/.venv/lib/python3.11/site-packages/flask/app.py',
    '/usr/lib/python3/dist-packages/yaml/constructor.py',
    '/usr/lib/python3.12/json/decoder.py',
    '<frozen importlib._bootstrap>',
    '<string>',
    '',
    None,
])
def test_library_and_runtime_paths_are_not_application_code(path):
    assert not is_application_path(path)


def test_faultline_itself_is_not_application_code():
    assert not is_application_path(faultline.serializer.__file__)


def test_application_paths():
    assert is_application_path('/srv/shop/app/orders.py')
    assert is_application_path(__file__)


def test_app_root_restricts_application_paths():
    assert is_application_path('/srv/shop/app/orders.py', app_root='/srv/shop')
    assert not is_application_path('/srv/other/orders.py', app_root='/srv/shop')
    assert not is_application_path('/srv/shopping/orders.py', app_root='/srv/shop')


def test_record_ignores_library_frames():
    trap = CaptureTrap()
    scope = CaptureScope()
    frame = _fake_frame('/usr/lib/python3.12/site-packages/sqlalchemy/engine/base.py', local_vars={'x': 1})

    assert trap.record(scope, frame, ValueError('boom')) is False
    assert scope.captured is None


def test_record_captures_application_frame():
    trap = CaptureTrap()
    scope = CaptureScope()
    error = ValueError('boom')
    service = type('OrderService', (), {})()
    frame = _fake_frame(
        '/srv/shop/app/orders.py',
        line=42,
        name='place_order',
        local_vars={'self': service, 'quantity': 3, '_cache': {}},
    )

    assert trap.record(scope, frame, error) is True

    captured = scope.captured
    assert captured.file_path == '/srv/shop/app/orders.py'
    assert captured.line_number == 42
    assert captured.method_name == 'place_order'
    assert captured.class_name == 'OrderService'
    assert captured.locals == {'self': service, 'quantity': 3}
    assert captured.exception is error
    assert captured.location == '/srv/shop/app/orders.py:42'


def test_armed_trap_captures_raising_frame():
    trap = CaptureTrap()

    with trap.armed() as scope:
        try:
            _charge(120)
        except ValueError as e:
            recorded = scope.captured
            captured = trap.frame_for(e, scope)

    assert recorded is not None
    assert captured is recorded
    assert captured.method_name == '_charge'
    assert captured.file_path == __file__
    assert captured.locals == {'order_total': 120, 'discount': 'SPRING'}


def test_capture_failure_inside_the_hook_is_logged(caplog):
    trap = CaptureTrap()
    caplog.set_level(logging.DEBUG, logger='faultline.exceptions.capture')

    with patch.object(trap, 'record', side_effect=RuntimeError('locals unavailable')):
        with trap.armed() as scope:
            with pytest.raises(ValueError):
                _charge(120)

    assert scope.captured is None
    assert 'Failed to capture frame locals: locals unavailable' in caplog.text


def test_disarm_restores_previous_trace_and_clears_scope():
    trap = CaptureTrap()
    previous = sys.gettrace()

    with trap.armed() as scope:
        assert trap.is_armed
        assert scope.is_active
        try:
            _charge(1)
        except ValueError:
            pass

    assert sys.gettrace() is previous
    assert not trap.is_armed
    assert not scope.is_active
    assert scope.captured is None


def test_disarm_runs_when_work_fails():
    trap = CaptureTrap()

    with pytest.raises(ValueError):
        with trap.armed():
            _charge(5)

    assert not trap.is_armed


def test_overlapping_scopes_keep_hook_until_last_disarm():
    trap = CaptureTrap()
    first = trap.arm()
    second = trap.arm()

    trap.disarm(second)
    assert trap.is_armed

    trap.disarm(first)
    assert not trap.is_armed


def test_captures_are_isolated_between_threads():
    trap = CaptureTrap()
    barrier = threading.Barrier(2)
    results = {}

    def worker(total):
        with trap.armed() as scope:
            barrier.wait(timeout=5)
            try:
                _charge(total)
            except ValueError as e:
                barrier.wait(timeout=5)
                results[total] = trap.frame_for(e, scope).locals['order_total']

    threads = [threading.Thread(target=worker, args=(total,)) for total in (10, 20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == {10: 10, 20: 20}


def test_frame_for_falls_back_to_traceback_when_not_armed():
    trap = CaptureTrap()

    try:
        _charge(99)
    except ValueError as e:
        error = e

    captured = trap.frame_for(error)

    assert captured.method_name == '_charge'
    assert captured.locals['order_total'] == 99


def test_frame_for_returns_none_without_application_frames():
    assert CaptureTrap().frame_for(ValueError('never raised')) is None


def test_snapshot_follows_exception_chain():
    scope = CaptureScope()
    inner = KeyError('sku')
    scope.captured = CapturedFrame('/srv/shop/app/cart.py', 3, 'add', exception=inner)
    outer = RuntimeError('cart failed')
    outer.__cause__ = inner

    assert scope.snapshot_for(outer) is scope.captured
    assert scope.snapshot_for(RuntimeError('unrelated')) is None
