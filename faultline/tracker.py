"""Turns an exception plus context into a persisted, dispatched occurrence."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from .errors import TrackingError
from .exceptions.capture import CapturedFrame, CaptureTrap, is_application_path
from .fingerprint import exception_class_name, exception_message, extract_location, format_backtrace
from .notifiers.base import NotifierDispatcher
from .serializer import VariableSerializer
from .storage.repository import ErrorGroupRepository

if TYPE_CHECKING:
    from .boundary import RequestInfo
    from .config import FaultlineConfig
    from .storage.database import Storage
    from .storage.models import ErrorGroup, ErrorOccurrence

logger = logging.getLogger(__name__)


@dataclass
class TrackingContext:
    """Everything known about an exception besides the exception itself."""

    request: 'RequestInfo | None' = None
    user: Any = None
    custom_data: dict[str, Any] = field(default_factory=dict)
    captured_frame: CapturedFrame | None = None
    handled: bool | None = None
    severity: str | None = None
    source: str | None = None


class Tracker:
    """Finds or creates the group, persists the occurrence, notifies."""

    def __init__(
        self,
        config: 'FaultlineConfig',
        storage: 'Storage',
        trap: CaptureTrap | None = None,
        dispatcher: NotifierDispatcher | None = None,
        serializer: VariableSerializer | None = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self.trap = trap or CaptureTrap(app_root=config.app_root)
        self.dispatcher = dispatcher or NotifierDispatcher(config.notifiers, config=config)
        self.serializer = serializer or VariableSerializer.from_config(config)

    def is_app_path(self, path: str) -> bool:
        return is_application_path(path, self.config.app_root)

    def track(
        self,
        exception: BaseException,
        context: TrackingContext | None = None,
    ) -> 'ErrorOccurrence | None':
        """Record one occurrence of ``exception``.

        Returns None when the exception is ignored or vetoed by
        ``before_track``. Raises :class:`TrackingError` if persisting fails;
        notifier failures never propagate.
        """
        context = context or TrackingContext()

        if self.config.is_ignored_exception(exception):
            logger.debug('[Faultline] Ignoring %s', type(exception).__name__)
            return None

        if not self._before_track(exception, context):
            return None

        group, occurrence = self._persist(exception, context)

        self._after_track(group, occurrence)
        self.dispatcher.dispatch(group, occurrence)
        return occurrence

    def _persist(
        self,
        exception: BaseException,
        context: TrackingContext,
    ) -> tuple['ErrorGroup', 'ErrorOccurrence']:
        exception_class = exception_class_name(exception)
        message = exception_message(exception)

        frame = context.captured_frame
        if frame is None and self.config.capture_local_variables:
            frame = self.trap.frame_for(exception)

        file_path, line_number, method_name = extract_location(exception, self.is_app_path)
        if file_path is None and frame is not None:
            file_path, line_number, method_name = frame.file_path, frame.line_number, frame.method_name

        try:
            with self.storage.session() as session, session.begin():
                repository = ErrorGroupRepository(session)
                group, created = repository.find_or_create(
                    exception_class, message, file_path, line_number, method_name
                )
                repository.record_hit(group)
                occurrence = repository.create_occurrence(
                    group, **self._occurrence_fields(exception_class, message, exception, context, frame)
                )
                repository.add_contexts(occurrence, self._context_entries(context))
        except SQLAlchemyError as e:
            logger.error('[Faultline] Failed to persist %s: %s', exception_class, e)
            raise TrackingError(f'Failed to persist {exception_class}: {e}') from e

        logger.debug(
            '[Faultline] Tracked %s in group %s (%s, count=%s)',
            exception_class, group.id, 'new' if created else 'existing', group.occurrences_count,
        )
        return group, occurrence

    def _occurrence_fields(
        self,
        exception_class: str,
        message: str,
        exception: BaseException,
        context: TrackingContext,
        frame: CapturedFrame | None,
    ) -> dict[str, Any]:
        request = context.request
        user_id, user_type = _user_identity(context.user)

        local_variables = None
        if frame is not None and frame.locals and self.config.capture_local_variables:
            local_variables = self.serializer.serialize(frame.locals)

        return {
            'exception_class': exception_class,
            'message': message,
            'backtrace': format_backtrace(exception),
            'environment': self.config.environment,
            'hostname': self.config.hostname,
            'process_id': self.config.process_id,
            'request_method': request.method if request else None,
            'request_url': request.url if request else None,
            'ip_address': request.ip_address if request else None,
            'user_agent': request.user_agent if request else None,
            'user_id': user_id,
            'user_type': user_type,
            'local_variables': local_variables,
        }

    def _context_entries(self, context: TrackingContext) -> dict[str, Any]:
        entries: dict[str, Any] = {}

        if context.custom_data:
            entries.update(self.serializer.serialize(context.custom_data))

        request = context.request
        if request is not None:
            if request.params:
                entries['request_params'] = self.serializer.serialize(request.params)
            if request.headers:
                entries['request_headers'] = self.serializer.serialize(request.headers)

        for key in ('handled', 'severity', 'source'):
            value = getattr(context, key)
            if value is not None:
                entries[key] = value

        return entries

    def _before_track(self, exception: BaseException, context: TrackingContext) -> bool:
        callback = self.config.before_track
        if callback is None:
            return True
        try:
            return bool(callback(exception, context))
        except Exception as e:
            logger.error('[Faultline] before_track callback failed, tracking anyway: %s', e)
            return True

    def _after_track(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> None:
        callback = self.config.after_track
        if callback is None:
            return
        try:
            callback(group, occurrence)
        except Exception as e:
            logger.error('[Faultline] after_track callback failed: %s', e)


def _user_identity(user: Any) -> tuple[str | None, str | None]:
    """(id, type) for whatever the user extractor returned."""
    if user is None:
        return None, None

    if isinstance(user, dict):
        user_id = user.get('id')
        user_type = user.get('type') or 'User'
    else:
        user_id = getattr(user, 'pk', None)
        if user_id is None:
            user_id = getattr(user, 'id', None)
        user_type = type(user).__name__

    if user_id is None:
        return None, None
    return str(user_id), user_type
