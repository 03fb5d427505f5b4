"""Main Faultline agent."""

from __future__ import annotations

import atexit
import logging
from typing import Any

from .boundary import InterceptionBoundary
from .config import FaultlineConfig
from .exceptions.capture import CaptureTrap
from .exceptions.handler import UncaughtExceptionHandler
from .issues import GitHubIssueCreator, IssueResult
from .notifiers.base import NotifierDispatcher
from .serializer import VariableSerializer
from .storage.database import Storage
from .storage.models import ErrorOccurrence
from .storage.repository import ErrorGroupRepository
from .tracker import Tracker, TrackingContext

logger = logging.getLogger(__name__)


class FaultlineAgent:
    """Main agent that coordinates all tracking components."""

    def __init__(self, config: FaultlineConfig, storage: Storage | None = None) -> None:
        self.config = config
        self._started = False

        # Initialize components
        self.storage = storage or Storage(config.database_url)
        self.trap = CaptureTrap(app_root=config.app_root)
        self.dispatcher = NotifierDispatcher(config.notifiers, config=config)
        self.tracker = Tracker(
            config,
            self.storage,
            trap=self.trap,
            dispatcher=self.dispatcher,
            serializer=VariableSerializer.from_config(config),
        )
        self.boundary = InterceptionBoundary(config, self.tracker, self.trap)
        self._exception_handler = UncaughtExceptionHandler(self.tracker)

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Start the agent and all its components."""
        if self._started:
            return

        self.config.configure_logging()
        self.storage.create_all()

        # Install exception handlers
        if self.config.capture_uncaught:
            self._exception_handler.install()

        # Register cleanup handlers
        atexit.register(self._cleanup)

        self._started = True
        logger.debug('[Faultline] Agent started')

    def stop(self) -> None:
        """Stop the agent and cleanup all resources."""
        if not self._started:
            return

        self._cleanup()
        atexit.unregister(self._cleanup)
        self._started = False

    def track(
        self,
        exception: BaseException,
        context: dict[str, Any] | TrackingContext | None = None,
    ) -> ErrorOccurrence | None:
        """Manually track an exception."""
        if not self._started or not self.config.enabled:
            return None

        if not isinstance(context, TrackingContext):
            context = TrackingContext(custom_data=dict(context or {}))
        return self.tracker.track(exception, context)

    def report(
        self,
        exception: BaseException,
        handled: bool = True,
        severity: str = 'error',
        context: dict[str, Any] | None = None,
        source: str | None = None,
    ) -> ErrorOccurrence | None:
        """Report an exception the application already handled."""
        if self.config.is_ignored_exception(exception):
            return None

        return self.track(exception, TrackingContext(
            custom_data=dict(context or {}),
            handled=handled,
            severity=severity,
            source=source,
        ))

    def create_issue(self, group_id: int) -> IssueResult:
        """File a GitHub issue for a group using its latest occurrence."""
        with self.storage.session() as session:
            repository = ErrorGroupRepository(session)
            group = repository.get(group_id)
            if group is None:
                return IssueResult(False, error=f'Error group {group_id} not found', error_kind='not_found')
            occurrence = repository.latest_occurrence(group_id)
            return GitHubIssueCreator(self.config, group, occurrence).create()

    def _cleanup(self) -> None:
        """Cleanup all resources."""
        self._exception_handler.uninstall()
        self.storage.dispose()
        logger.debug('[Faultline] Agent stopped')
