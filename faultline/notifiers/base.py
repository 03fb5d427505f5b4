"""Notifier interface and fan-out dispatch."""

from __future__ import annotations

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable

import requests

from ..errors import DeliveryError
from ..storage.models import as_utc, utcnow

if TYPE_CHECKING:
    from ..config import FaultlineConfig
    from ..storage.models import ErrorGroup, ErrorOccurrence

logger = logging.getLogger(__name__)

ALERT_MARKER = '\U0001F6A8'
REOPENED_MARKER = '\U0001F504'
ROUTINE_MARKER = '⚠️'

MAX_MESSAGE_LENGTH = 200
USER_AGENT = 'Faultline'


def truncate(text: str | None, length: int) -> str:
    """Cut ``text`` to ``length`` characters, ending with '...' when cut."""
    text = text or ''
    if len(text) <= length:
        return text
    return text[:max(length - 3, 0)] + '...'


@dataclass
class NotificationResult:
    """Outcome of one delivery attempt."""

    channel: str
    success: bool
    status_code: int | None = None
    error: str | None = None
    skipped: bool = False


class Notifier(ABC):
    """Base class for outbound notification channels.

    Subclasses implement :meth:`send`; :meth:`notify` wraps it so that a
    transport error or a non-2xx response becomes a failed
    :class:`NotificationResult` instead of an exception.
    """

    name = 'notifier'

    def __init__(
        self,
        config: 'FaultlineConfig | None' = None,
        timeout: tuple[float, float] | None = None,
        reopen_window: float | None = None,
        app_name: str | None = None,
        **options: Any,
    ) -> None:
        self.options = options
        self._explicit_timeout = timeout
        self._explicit_reopen_window = reopen_window
        self._explicit_app_name = app_name
        self.config: 'FaultlineConfig | None' = None
        self.bind_config(config)

    def bind_config(self, config: 'FaultlineConfig | None') -> None:
        """Take timeouts, reopen window and app name from ``config``.

        Values passed explicitly to the constructor still win.
        """
        self.config = config
        self.timeout = self._explicit_timeout or (config.timeout if config else (5.0, 10.0))
        self.reopen_window = self._explicit_reopen_window if self._explicit_reopen_window is not None else (
            config.reopen_window if config else 3600.0
        )
        self.app_name = self._explicit_app_name or (config.app_name if config else 'app')

    def should_notify(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> bool:
        """Override for rate limiting or severity filters."""
        return True

    def notify(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> NotificationResult:
        """Deliver one notification. Never raises."""
        try:
            response = self.send(group, occurrence)
        except DeliveryError as e:
            logger.error('[Faultline] %s: Request failed (%s): %s', self.name, e.status_code, e.body)
            return NotificationResult(self.name, False, status_code=e.status_code, error=str(e))
        except Exception as e:
            logger.error('[Faultline] %s: Failed to send notification: %s', self.name, e)
            return NotificationResult(self.name, False, error=str(e))

        return NotificationResult(self.name, True, status_code=getattr(response, 'status_code', None))

    @abstractmethod
    def send(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> requests.Response:
        """Perform the outbound call, raising on failure."""

    # -- transport --------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        headers = {'User-Agent': USER_AGENT, **kwargs.pop('headers', {})}
        response = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        self._check_response(response)
        return response

    def _check_response(self, response: requests.Response) -> None:
        if not 200 <= response.status_code < 300:
            body = (response.text or '')[:500]
            raise DeliveryError(
                f'{self.name} API error: {response.status_code}',
                status_code=response.status_code,
                body=body,
            )

    # -- formatting -------------------------------------------------------

    def is_reopened(self, group: 'ErrorGroup') -> bool:
        return group.recently_reopened(timedelta(seconds=self.reopen_window))

    def format_message(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> dict[str, Any]:
        """Channel-neutral summary that each notifier renders its own way."""
        return {
            'title': f'{self.status_marker(group)} Error in {self.app_name}',
            'exception_class': group.exception_class,
            'message': truncate(group.sanitized_message, MAX_MESSAGE_LENGTH),
            'occurrences': group.occurrences_count,
            'status': group.status,
            'location': self.format_location(group),
            'url': occurrence.request_url,
            'method': occurrence.request_method,
            'user': occurrence.user_identifier,
            'timestamp': as_utc(occurrence.created_at) or utcnow(),
            'reopened': self.is_reopened(group),
            'link': self.group_url(group),
        }

    def format_location(self, group: 'ErrorGroup') -> str:
        if not group.file_path:
            return 'unknown'
        if group.line_number:
            return f'{group.file_path}:{group.line_number}'
        return group.file_path

    def status_marker(self, group: 'ErrorGroup') -> str:
        if self.is_reopened(group):
            return REOPENED_MARKER
        if group.occurrences_count == 1:
            return ALERT_MARKER
        return ROUTINE_MARKER

    def group_url(self, group: 'ErrorGroup') -> str | None:
        return group.url(self.config.base_url if self.config else None)

    @staticmethod
    def escape_html(text: Any) -> str:
        if text is None:
            return ''
        return html.escape(str(text), quote=True).replace('&#x27;', '&#39;')

    @staticmethod
    def format_timestamp(value: datetime | None) -> str:
        return value.isoformat() if value else ''


class NotifierDispatcher:
    """Sends one occurrence to every configured notifier, independently."""

    def __init__(self, notifiers: Iterable[Notifier] = (), config: 'FaultlineConfig | None' = None) -> None:
        self.notifiers = list(notifiers)
        if config is not None:
            for notifier in self.notifiers:
                if isinstance(notifier, Notifier) and notifier.config is None:
                    notifier.bind_config(config)

    def dispatch(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> list[NotificationResult]:
        results: list[NotificationResult] = []

        for notifier in self.notifiers:
            name = getattr(notifier, 'name', type(notifier).__name__)
            try:
                if not notifier.should_notify(group, occurrence):
                    results.append(NotificationResult(name, False, skipped=True))
                    continue
                results.append(notifier.notify(group, occurrence))
            except Exception as e:
                logger.error('[Faultline] %s: Notifier raised: %s', name, e)
                results.append(NotificationResult(name, False, error=str(e)))

        return results
