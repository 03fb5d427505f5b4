"""Tests for the uncaught exception hooks."""

import sys
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from faultline.exceptions.handler import UncaughtExceptionHandler


@pytest.fixture
def original_hooks(monkeypatch):
    sys_hook = MagicMock()
    thread_hook = MagicMock()
    monkeypatch.setattr(sys, 'excepthook', sys_hook)
    monkeypatch.setattr(threading, 'excepthook', thread_hook)
    return sys_hook, thread_hook


def _raised():
    try:
        raise RuntimeError('worker crashed')
    except RuntimeError as e:
        return e


def test_install_and_uninstall(original_hooks):
    sys_hook, thread_hook = original_hooks
    handler = UncaughtExceptionHandler(MagicMock())

    handler.install()
    assert handler.installed
    assert sys.excepthook == handler._excepthook
    assert threading.excepthook == handler._threading_excepthook

    handler.uninstall()
    assert not handler.installed
    assert sys.excepthook is sys_hook
    assert threading.excepthook is thread_hook


def test_uncaught_exception_is_tracked_then_chained(original_hooks):
    sys_hook, _ = original_hooks
    tracker = MagicMock()
    handler = UncaughtExceptionHandler(tracker)
    handler.install()
    error = _raised()

    sys.excepthook(RuntimeError, error, error.__traceback__)

    exception, context = tracker.track.call_args.args
    assert exception is error
    assert context.handled is False
    assert context.source == 'uncaught'
    sys_hook.assert_called_once_with(RuntimeError, error, error.__traceback__)
    handler.uninstall()


def test_thread_exception_is_tracked_then_chained(original_hooks):
    _, thread_hook = original_hooks
    tracker = MagicMock()
    handler = UncaughtExceptionHandler(tracker)
    handler.install()
    error = _raised()
    args = SimpleNamespace(exc_type=RuntimeError, exc_value=error, exc_traceback=error.__traceback__, thread=None)

    threading.excepthook(args)

    assert tracker.track.call_args.args[1].source == 'thread'
    thread_hook.assert_called_once_with(args)
    handler.uninstall()


def test_tracking_failure_still_reaches_original_hook(original_hooks, caplog):
    sys_hook, _ = original_hooks
    tracker = MagicMock()
    tracker.track.side_effect = RuntimeError('database is locked')
    handler = UncaughtExceptionHandler(tracker)
    handler.install()
    error = _raised()

    sys.excepthook(RuntimeError, error, error.__traceback__)

    sys_hook.assert_called_once()
    assert 'database is locked' in caplog.text
    handler.uninstall()
