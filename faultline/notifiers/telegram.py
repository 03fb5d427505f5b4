"""Telegram bot API notifier."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import requests

from ..errors import ConfigurationError
from .base import Notifier, truncate

if TYPE_CHECKING:
    from ..storage.models import ErrorGroup, ErrorOccurrence

API_URL = 'https://api.telegram.org/bot{token}/sendMessage'


class TelegramNotifier(Notifier):
    """Sends an HTML formatted message through a Telegram bot."""

    name = 'telegram'

    def __init__(self, bot_token: str, chat_id: str | int, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not bot_token or not chat_id:
            raise ConfigurationError('TelegramNotifier requires bot_token and chat_id')
        self.bot_token = bot_token
        self.chat_id = str(chat_id)

    def send(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> requests.Response:
        data = {
            'chat_id': self.chat_id,
            'text': self.build_message(group, occurrence),
            'parse_mode': 'HTML',
            'disable_web_page_preview': 'true',
        }
        return self._request('POST', API_URL.format(token=self.bot_token), data=data)

    def build_message(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> str:
        message = self.format_message(group, occurrence)
        esc = self.escape_html

        lines = [
            f"<b>{esc(message['title'])}</b>",
            '',
            f"<b>Type:</b> <code>{esc(group.exception_class)}</code>",
            f"<b>Message:</b> {esc(message['message'])}",
            f"<b>Count:</b> {group.occurrences_count}",
            f"<b>Location:</b> <code>{esc(message['location'])}</code>",
        ]
        if message['user']:
            lines.append(f"<b>User:</b> {esc(message['user'])}")
        if message['url']:
            lines.append(f"<b>URL:</b> {esc(message['method'] or '')} {esc(truncate(message['url'], 100))}")
        if message['link']:
            lines.append(f"<a href=\"{esc(message['link'])}\">View in Faultline</a>")
        if message['reopened']:
            lines.append('')
            lines.append('<i>This error was previously resolved and has occurred again.</i>')

        return '\n'.join(lines)
