"""Call-site and local variable capture for raised exceptions."""

from __future__ import annotations

import contextvars
import logging
import os
import re
import sys
import sysconfig
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from types import FrameType, TracebackType
from typing import Any, Callable, Iterator

logger = logging.getLogger(__name__)

_PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

_DEPENDENCY_MARKERS = ('site-packages', 'dist-packages')
_RUNTIME_PATTERN = re.compile(r'[/\\]lib[/\\]python\d+(\.\d+)?[/\\]')


def _runtime_dirs() -> tuple[str, ...]:
    dirs = set()
    for key in ('stdlib', 'platstdlib'):
        path = sysconfig.get_paths().get(key)
        if path:
            dirs.add(os.path.normpath(path))
    return tuple(dirs)


_RUNTIME_DIRS = _runtime_dirs()

_active_scope: contextvars.ContextVar['CaptureScope | None'] = contextvars.ContextVar(
    'faultline_capture_scope', default=None
)


def is_application_path(path: str | None, app_root: str | None = None) -> bool:
    """Whether ``path`` belongs to application code rather than a library.

    Pseudo-paths (``<frozen ...>``, ``<string>``), installed dependencies,
    the interpreter's own library and Faultline itself are never application
    code. When ``app_root`` is given the path must also lie under it.
    """
    if not path or path.startswith('<'):
        return False

    if any(marker in path for marker in _DEPENDENCY_MARKERS):
        return False

    if _RUNTIME_PATTERN.search(path):
        return False

    normalized = os.path.normpath(path)
    if any(normalized.startswith(d + os.sep) for d in _RUNTIME_DIRS):
        return False

    if normalized.startswith(_PACKAGE_DIR + os.sep):
        return False

    if app_root:
        root = os.path.normpath(app_root)
        return normalized == root or normalized.startswith(root + os.sep)

    return True


@dataclass
class CapturedFrame:
    """Snapshot of the frame where an exception was seen."""

    file_path: str
    line_number: int
    method_name: str
    class_name: str | None = None
    locals: dict[str, Any] = field(default_factory=dict)
    exception: BaseException | None = field(default=None, repr=False)

    @property
    def location(self) -> str:
        return f'{self.file_path}:{self.line_number}'


class CaptureScope:
    """Per-request storage for the most recent capture.

    One scope exists per armed unit of work; it is passed explicitly through
    the handling path and cleared when the work finishes.
    """

    def __init__(self) -> None:
        self.captured: CapturedFrame | None = None
        self._token: contextvars.Token | None = None

    @property
    def is_active(self) -> bool:
        """True between arm() and disarm()."""
        return self._token is not None

    @property
    def exception(self) -> BaseException | None:
        return self.captured.exception if self.captured else None

    def snapshot_for(self, exception: BaseException) -> CapturedFrame | None:
        """Return the capture if it was taken for ``exception`` or its chain."""
        if self.captured is None:
            return None

        seen: set[int] = set()
        current: BaseException | None = exception
        while current is not None and id(current) not in seen:
            if current is self.captured.exception:
                return self.captured
            seen.add(id(current))
            current = current.__cause__ or current.__context__
        return None

    def clear(self) -> None:
        self.captured = None


class CaptureTrap:
    """Records the call site and locals of exceptions raised while armed.

    The hook is installed with ``sys.settrace`` on the current thread only.
    Captures land in the active :class:`CaptureScope`, which is looked up
    through a context variable, so threads and asyncio tasks sharing one
    trap never see each other's data.
    """

    def __init__(self, app_root: str | None = None) -> None:
        self.app_root = app_root
        self._thread_state = threading.local()

    # -- arming -----------------------------------------------------------

    def arm(self) -> CaptureScope:
        """Arm the trap for one unit of work and return its scope."""
        scope = CaptureScope()
        scope._token = _active_scope.set(scope)

        state = self._thread_state
        depth = getattr(state, 'depth', 0)
        if depth == 0:
            state.previous = sys.gettrace()
            sys.settrace(self._trace_call)
        state.depth = depth + 1
        return scope

    def disarm(self, scope: CaptureScope) -> None:
        """Disarm the trap and clear ``scope``."""
        state = self._thread_state
        depth = getattr(state, 'depth', 0)
        try:
            if depth <= 1:
                sys.settrace(getattr(state, 'previous', None))
                state.previous = None
                state.depth = 0
            else:
                state.depth = depth - 1
        finally:
            if scope._token is not None:
                try:
                    _active_scope.reset(scope._token)
                except ValueError:
                    # Token created in another context (e.g. a different task)
                    _active_scope.set(None)
                scope._token = None
            scope.clear()

    @contextmanager
    def armed(self) -> Iterator[CaptureScope]:
        """Context manager form of :meth:`arm` / :meth:`disarm`."""
        scope = self.arm()
        try:
            yield scope
        finally:
            self.disarm(scope)

    @property
    def is_armed(self) -> bool:
        return getattr(self._thread_state, 'depth', 0) > 0

    # -- recording --------------------------------------------------------

    def record(self, scope: CaptureScope, frame: FrameType, exception: BaseException | None) -> bool:
        """Record ``frame`` into ``scope``. Returns False for library frames."""
        code = frame.f_code
        if not is_application_path(code.co_filename, self.app_root):
            return False

        scope.captured = CapturedFrame(
            file_path=code.co_filename,
            line_number=frame.f_lineno,
            method_name=code.co_name,
            class_name=_get_class_name(frame),
            locals=_snapshot_locals(frame),
            exception=exception,
        )
        return True

    def frame_for(self, exception: BaseException, scope: CaptureScope | None = None) -> CapturedFrame | None:
        """Best available capture for ``exception``.

        Prefers what the trap recorded in ``scope``; otherwise falls back to
        the innermost application frame still referenced by the traceback.
        """
        if scope is not None:
            captured = scope.snapshot_for(exception)
            if captured is not None:
                return captured

        tb = _innermost_app_traceback(exception.__traceback__, self.app_root)
        if tb is None:
            return None

        frame = tb.tb_frame
        return CapturedFrame(
            file_path=frame.f_code.co_filename,
            line_number=tb.tb_lineno,
            method_name=frame.f_code.co_name,
            class_name=_get_class_name(frame),
            locals=_snapshot_locals(frame),
            exception=exception,
        )

    # -- trace hooks ------------------------------------------------------

    def _trace_call(self, frame: FrameType, event: str, arg: Any) -> Callable | None:
        if event != 'call':
            return None
        if _active_scope.get() is None:
            return None
        if not is_application_path(frame.f_code.co_filename, self.app_root):
            return None

        frame.f_trace_lines = False
        return self._trace_frame

    def _trace_frame(self, frame: FrameType, event: str, arg: Any) -> Callable | None:
        if event == 'exception':
            scope = _active_scope.get()
            if scope is not None:
                exception = arg[1] if isinstance(arg, tuple) and len(arg) > 1 else None
                # The first application frame to see an exception is the innermost one
                if exception is None or scope.exception is not exception:
                    try:
                        self.record(scope, frame, exception)
                    except Exception as e:
                        logger.debug('[Faultline] Failed to capture frame locals: %s', e)
        return self._trace_frame


def _innermost_app_traceback(tb: TracebackType | None, app_root: str | None) -> TracebackType | None:
    found = None
    while tb is not None:
        if is_application_path(tb.tb_frame.f_code.co_filename, app_root):
            found = tb
        tb = tb.tb_next
    return found


def _snapshot_locals(frame: FrameType) -> dict[str, Any]:
    """Shallow copy of the frame's locals, private names skipped."""
    try:
        items = list(frame.f_locals.items())
    except Exception:
        return {}
    return {name: value for name, value in items if not name.startswith('_')}


def _get_class_name(frame: FrameType) -> str | None:
    """Try to extract class name from frame."""
    try:
        frame_locals = frame.f_locals
    except Exception:
        return None

    local_self = frame_locals.get('self')
    if local_self is not None:
        return type(local_self).__name__

    local_cls = frame_locals.get('cls')
    if local_cls is not None and isinstance(local_cls, type):
        return local_cls.__name__

    return None
