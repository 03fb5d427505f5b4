"""Generic JSON webhook notifier."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import requests

from ..errors import ConfigurationError
from ..storage.models import utcnow
from .base import Notifier

if TYPE_CHECKING:
    from ..storage.models import ErrorGroup, ErrorOccurrence

SUPPORTED_METHODS = ('POST', 'PUT')


class WebhookNotifier(Notifier):
    """Sends the full group and occurrence record to an arbitrary endpoint."""

    name = 'webhook'

    def __init__(
        self,
        url: str,
        method: str = 'POST',
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        if not url:
            raise ConfigurationError('WebhookNotifier requires url')
        self.url = url
        self.method = method.upper()
        self.headers = dict(headers or {})

    def send(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> requests.Response:
        # Checked per call so a bad method is a soft failure, not a startup error
        if self.method not in SUPPORTED_METHODS:
            raise ValueError(f'Unsupported HTTP method: {self.method}')

        headers = {'Content-Type': 'application/json', **self.headers}
        return self._request(self.method, self.url, json=self.build_payload(group, occurrence), headers=headers)

    def build_payload(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> dict[str, Any]:
        ts = self.format_timestamp
        return {
            'event': 'error.occurred',
            'timestamp': ts(utcnow()),
            'app': self.app_name,
            'environment': self.config.environment if self.config else occurrence.environment,
            'error_group': {
                'id': group.id,
                'fingerprint': group.fingerprint,
                'exception_class': group.exception_class,
                'message': group.sanitized_message,
                'file_path': group.file_path,
                'line_number': group.line_number,
                'method_name': group.method_name,
                'status': group.status,
                'occurrences_count': group.occurrences_count,
                'first_seen_at': ts(group.first_seen_at),
                'last_seen_at': ts(group.last_seen_at),
                'resolved_at': ts(group.resolved_at) or None,
                'recently_reopened': self.is_reopened(group),
                'url': self.group_url(group),
            },
            'occurrence': {
                'id': occurrence.id,
                'exception_class': occurrence.exception_class,
                'message': occurrence.message,
                'backtrace': list(occurrence.backtrace or []),
                'environment': occurrence.environment,
                'hostname': occurrence.hostname,
                'process_id': occurrence.process_id,
                'request_method': occurrence.request_method,
                'request_url': occurrence.request_url,
                'ip_address': occurrence.ip_address,
                'user_agent': occurrence.user_agent,
                'user_id': occurrence.user_id,
                'user_type': occurrence.user_type,
                'local_variables': occurrence.local_variables,
                'created_at': ts(occurrence.created_at),
            },
        }
