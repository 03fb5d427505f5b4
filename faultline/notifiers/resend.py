"""Email notifier using the Resend transactional email API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

import requests

from ..errors import ConfigurationError
from .base import Notifier, truncate

if TYPE_CHECKING:
    from ..storage.models import ErrorGroup, ErrorOccurrence

API_URL = 'https://api.resend.com/emails'

HEADER_COLOR = '#dc2626'
REOPENED_HEADER_COLOR = '#d97706'


class ResendNotifier(Notifier):
    """Emails a styled summary table for each tracked error."""

    name = 'resend'

    def __init__(
        self,
        api_key: str,
        to: str | Iterable[str],
        from_: str,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.to = [to] if isinstance(to, str) else list(to)
        self.from_ = from_
        if not (self.api_key and self.to and self.from_):
            raise ConfigurationError('ResendNotifier requires api_key, to and from_')

    def send(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> requests.Response:
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }
        return self._request('POST', API_URL, json=self.build_payload(group, occurrence), headers=headers)

    def build_payload(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> dict[str, Any]:
        return {
            'from': self.from_,
            'to': self.to,
            'subject': self.build_subject(group),
            'html': self.build_html(group, occurrence),
        }

    def build_subject(self, group: 'ErrorGroup') -> str:
        prefix = '[REOPENED]' if self.is_reopened(group) else '[ERROR]'
        return f'{prefix} {group.exception_class}: {truncate(group.sanitized_message, 80)}'

    def build_html(self, group: 'ErrorGroup', occurrence: 'ErrorOccurrence') -> str:
        message = self.format_message(group, occurrence)
        esc = self.escape_html
        reopened = message['reopened']
        color = REOPENED_HEADER_COLOR if reopened else HEADER_COLOR
        badge = (
            ' <span style="background:#fff;color:#d97706;padding:2px 8px;'
            'border-radius:4px;font-size:12px;">REOPENED</span>'
            if reopened else ''
        )

        rows = [
            ('Exception', f"<code>{esc(group.exception_class)}</code>"),
            ('Message', esc(group.sanitized_message)),
            ('Location', f"<code>{esc(message['location'])}</code>"),
            ('Occurrences', str(group.occurrences_count)),
            ('Environment', esc(occurrence.environment)),
        ]
        if message['user']:
            rows.append(('User', esc(message['user'])))
        if message['url']:
            rows.append(('Request', f"{esc(message['method'])} {esc(truncate(message['url'], 60))}"))

        row_html = ''.join(
            '<tr>'
            f'<td style="padding:8px;border-bottom:1px solid #e5e7eb;color:#6b7280;width:120px;">{label}</td>'
            f'<td style="padding:8px;border-bottom:1px solid #e5e7eb;">{value}</td>'
            '</tr>'
            for label, value in rows
        )
        link_html = (
            f'<p style="margin-top:16px;"><a href="{esc(message["link"])}" '
            f'style="color:{color};">View error details</a></p>'
            if message['link'] else ''
        )

        return (
            '<!DOCTYPE html>'
            '<html><body style="font-family:-apple-system,Segoe UI,Helvetica,Arial,sans-serif;margin:0;padding:0;">'
            '<div style="max-width:640px;margin:0 auto;">'
            f'<div style="background:{color};color:#fff;padding:16px 20px;">'
            f"<h2 style=\"margin:0;font-size:18px;\">{esc(message['title'])}{badge}</h2>"
            '</div>'
            '<div style="padding:20px;">'
            f'<table style="width:100%;border-collapse:collapse;font-size:14px;">{row_html}</table>'
            f'{link_html}'
            '</div></div></body></html>'
        )
