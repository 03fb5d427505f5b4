"""Process-level hooks for exceptions nobody caught."""

from __future__ import annotations

import logging
import sys
import threading
from types import TracebackType
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from ..tracker import Tracker


logger = logging.getLogger(__name__)

ExceptHookType = Callable[[type[BaseException], BaseException, TracebackType | None], None]


class UncaughtExceptionHandler:
    """Tracks exceptions reaching ``sys.excepthook`` or ``threading.excepthook``."""

    def __init__(self, tracker: 'Tracker') -> None:
        self.tracker = tracker
        self._installed = False
        self._original_excepthook: ExceptHookType | None = None
        self._original_threading_excepthook: Callable[[Any], None] | None = None

    def install(self) -> None:
        """Install exception hooks."""
        if self._installed:
            return

        # Save original hooks
        self._original_excepthook = sys.excepthook
        self._original_threading_excepthook = threading.excepthook

        # Install our hooks
        sys.excepthook = self._excepthook
        threading.excepthook = self._threading_excepthook

        self._installed = True
        logger.debug('[Faultline] Exception handlers installed')

    def uninstall(self) -> None:
        """Uninstall exception hooks."""
        if not self._installed:
            return

        # Restore original hooks
        if self._original_excepthook:
            sys.excepthook = self._original_excepthook
        if self._original_threading_excepthook:
            threading.excepthook = self._original_threading_excepthook

        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def _track(self, exc_value: BaseException, origin: str) -> None:
        from ..tracker import TrackingContext

        try:
            self.tracker.track(exc_value, TrackingContext(handled=False, severity='error', source=origin))
        except Exception as e:
            logger.error('[Faultline] Error capturing %s exception: %s', origin, e)

    def _excepthook(
        self,
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_tb: TracebackType | None,
    ) -> None:
        """Handle uncaught exceptions."""
        if exc_tb is not None and exc_value.__traceback__ is None:
            exc_value.__traceback__ = exc_tb
        self._track(exc_value, 'uncaught')

        # Call original hook
        if self._original_excepthook:
            self._original_excepthook(exc_type, exc_value, exc_tb)

    def _threading_excepthook(self, args: Any) -> None:
        """Handle exceptions escaping a thread's run()."""
        exc_value = getattr(args, 'exc_value', None)
        if exc_value is not None:
            self._track(exc_value, 'thread')

        if self._original_threading_excepthook:
            self._original_threading_excepthook(args)
