"""Request-scoped interception of exceptions."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator, TypeVar

from .exceptions.capture import CaptureScope, CaptureTrap
from .tracker import Tracker, TrackingContext

if TYPE_CHECKING:
    from .config import FaultlineConfig
    from .storage.models import ErrorOccurrence

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RequestInfo:
    """Framework-neutral view of the request being handled."""

    method: str | None = None
    url: str | None = None
    path: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    # The framework's own request object, for user/custom-context extractors
    raw: Any = field(default=None, repr=False)
    user: Any = field(default=None, repr=False)


class InterceptionBoundary:
    """Wraps one unit of work: arms the trap, tracks failures, re-raises.

    Usage:
        with boundary.intercept(request_info):
            response = handle(request)

    The original exception always propagates unchanged; anything that goes
    wrong while tracking it is logged and dropped.
    """

    def __init__(
        self,
        config: 'FaultlineConfig',
        tracker: Tracker,
        trap: CaptureTrap | None = None,
    ) -> None:
        self.config = config
        self.tracker = tracker
        self.trap = trap or tracker.trap

    @contextmanager
    def intercept(self, request: RequestInfo) -> Iterator[CaptureScope]:
        scope = self.trap.arm() if self.config.capture_local_variables else CaptureScope()
        try:
            yield scope
        except Exception as exc:
            self.handle_exception(exc, request, scope)
            raise
        finally:
            if scope.is_active:
                self.trap.disarm(scope)
            else:
                scope.clear()

    def call(self, request: RequestInfo, work: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``work`` inside :meth:`intercept`."""
        with self.intercept(request):
            return work(*args, **kwargs)

    def handle_exception(
        self,
        exception: BaseException,
        request: RequestInfo,
        scope: CaptureScope | None = None,
    ) -> 'ErrorOccurrence | None':
        """Track ``exception`` for ``request``. Never raises."""
        try:
            if self.should_ignore(exception, request):
                return None

            context = TrackingContext(
                request=request,
                user=self.extract_user(request),
                custom_data=self.extract_custom_data(request),
                captured_frame=self.trap.frame_for(exception, scope) if self.config.capture_local_variables else None,
            )
            return self.tracker.track(exception, context)
        except Exception:
            logger.exception('[Faultline] Failed to track %s', type(exception).__name__)
            return None

    def should_ignore(self, exception: BaseException, request: RequestInfo) -> bool:
        """Cheap checks that run before any context extraction."""
        if self.config.is_ignored_exception(exception):
            return True
        if self.config.is_ignored_path(request.path):
            return True
        if self.config.is_ignored_user_agent(request.user_agent):
            return True
        return False

    def extract_user(self, request: RequestInfo) -> Any:
        extractor = self.config.user_extractor
        try:
            if extractor is not None:
                return extractor(request)
            return request.user
        except Exception as e:
            logger.debug('[Faultline] User extraction failed: %s', e)
            return None

    def extract_custom_data(self, request: RequestInfo) -> dict[str, Any]:
        callback = self.config.custom_context
        if callback is None:
            return {}
        try:
            data = callback(request)
        except Exception as e:
            logger.debug('[Faultline] custom_context callback failed: %s', e)
            return {}
        return dict(data) if isinstance(data, dict) else {}
