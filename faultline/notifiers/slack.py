"""Slack incoming-webhook notifier."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import requests

from ..errors import ConfigurationError
from .base import Notifier

if TYPE_CHECKING:
    from ..storage.models import ErrorGroup, ErrorOccurrence


class SlackNotifier(Notifier):
    """Posts an attachment-style message to a Slack webhook."""

    name = 'slack'

    def __init__(
        self,
        webhook_url: str,
        channel: str | None = None,
        username: str = 'Faultline',
        icon_emoji: str = ':rotating_light:',
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        if not webhook_url:
            raise ConfigurationError('SlackNotifier requires webhook_url')
        self.webhook_url = webhook_url
        self.channel = channel
        self.username = username
        self.icon_emoji = icon_emoji

    def send(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> requests.Response:
        return self._request('POST', self.webhook_url, json=self.build_payload(group, occurrence))

    def build_payload(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> dict[str, Any]:
        message = self.format_message(group, occurrence)

        fields = [
            {'title': 'Exception', 'value': group.exception_class, 'short': True},
            {'title': 'Occurrences', 'value': str(group.occurrences_count), 'short': True},
            {'title': 'Location', 'value': message['location'], 'short': False},
        ]
        if message['user']:
            fields.append({'title': 'User', 'value': message['user'], 'short': True})

        attachment: dict[str, Any] = {
            'color': 'warning' if message['reopened'] else 'danger',
            'title': f"{message['title']}: {message['message']}",
            'fields': fields,
            'footer': f'Faultline | {self.config.environment if self.config else "production"}',
            'ts': int(message['timestamp'].timestamp()),
        }
        if message['reopened']:
            attachment['pretext'] = 'This error was previously resolved and has occurred again.'
        if message['link']:
            attachment['title_link'] = message['link']

        payload: dict[str, Any] = {
            'username': self.username,
            'icon_emoji': self.icon_emoji,
            'attachments': [attachment],
        }
        if self.channel:
            payload['channel'] = self.channel
        return payload
