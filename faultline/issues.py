"""Create GitHub issues from error groups."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

import requests

from .notifiers.base import USER_AGENT, truncate
from .storage.models import as_utc

if TYPE_CHECKING:
    from .config import FaultlineConfig
    from .storage.models import ErrorGroup, ErrorOccurrence

logger = logging.getLogger(__name__)

API_URL = 'https://api.github.com/repos/{repo}/issues'
PRODUCT_NAME = 'Faultline'

MAX_TITLE_MESSAGE_LENGTH = 80
MAX_BACKTRACE_LINES = 20
MAX_LOCAL_VARIABLES = 15
MAX_VALUE_LENGTH = 100


@dataclass
class IssueResult:
    """Outcome of an issue creation attempt."""

    success: bool
    issue_url: str | None = None
    issue_number: int | None = None
    error: str | None = None
    # not_configured, not_found, api_error or transport_error
    error_kind: str | None = None
    status_code: int | None = None
    response_body: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class GitHubIssueCreator:
    """Builds and files a GitHub issue for one error group.

    Triggered explicitly (from a dashboard action or ``faultline.create_issue``),
    never as part of automatic dispatch.
    """

    def __init__(
        self,
        config: 'FaultlineConfig',
        error_group: 'ErrorGroup',
        error_occurrence: 'ErrorOccurrence | None' = None,
    ) -> None:
        self.config = config
        self.error_group = error_group
        self.error_occurrence = error_occurrence

    @property
    def is_configured(self) -> bool:
        return bool(self.config.github_repo and self.config.github_token)

    def create(self) -> IssueResult:
        """File the issue. Never raises."""
        if not self.is_configured:
            return IssueResult(False, error='GitHub not configured', error_kind='not_configured')

        try:
            response = requests.post(
                API_URL.format(repo=self.config.github_repo),
                json={
                    'title': self.issue_title(),
                    'body': self.issue_body(),
                    'labels': self.issue_labels(),
                },
                headers={
                    'Authorization': f'Bearer {self.config.github_token}',
                    'Accept': 'application/vnd.github+json',
                    'X-GitHub-Api-Version': '2022-11-28',
                    'User-Agent': USER_AGENT,
                },
                timeout=self.config.timeout,
            )
        except Exception as e:
            logger.error('[Faultline] GitHub: Failed to create issue: %s', e)
            return IssueResult(False, error=f'Failed to create issue: {e}', error_kind='transport_error')

        if response.status_code != 201:
            body = (response.text or '')[:1000]
            logger.error('[Faultline] GitHub: API error %s: %s', response.status_code, body)
            return IssueResult(
                False,
                error=f'GitHub API error: {response.status_code} - {body}',
                error_kind='api_error',
                status_code=response.status_code,
                response_body=body,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}

        logger.info('[Faultline] GitHub: Created issue %s for error group %s', data.get('number'), self.error_group.id)
        return IssueResult(True, issue_url=data.get('html_url'), issue_number=data.get('number'), status_code=201)

    def issue_title(self) -> str:
        message = truncate(self.error_group.sanitized_message, MAX_TITLE_MESSAGE_LENGTH)
        return f'[{PRODUCT_NAME}] {self.error_group.exception_class}: {message}'

    def issue_labels(self) -> list[str]:
        return list(self.config.github_labels or [])

    def issue_body(self) -> str:
        group = self.error_group
        location = f'`{group.file_path}:{group.line_number}`' if group.file_path else 'unknown'
        if group.file_path and group.method_name:
            location = f'{location} in `{group.method_name}`'

        details = [
            '## Error Details',
            '',
            f'**Exception:** `{group.exception_class}`',
            f'**Message:** {group.sanitized_message}',
            f'**Location:** {location}',
            f'**Occurrences:** {group.occurrences_count}',
            f'**First seen:** {_format_time(group.first_seen_at)}',
            f'**Last seen:** {_format_time(group.last_seen_at)}',
        ]
        if self.error_occurrence is not None and self.error_occurrence.environment:
            details.append(f'**Environment:** {self.error_occurrence.environment}')

        sections = [
            '\n'.join(details),
            '\n'.join(['## Stack Trace', '', '```', self.format_backtrace(), '```']),
        ]

        local_variables = self.local_variables_section()
        if local_variables:
            sections.append(local_variables)

        link = group.url(self.config.base_url)
        footer = f'Created by [{PRODUCT_NAME}]({link})' if link else f'Created by [{PRODUCT_NAME}]'
        sections.append(f'---\n_{footer}_')

        return '\n\n'.join(sections)

    def format_backtrace(self) -> str:
        lines = list(self.error_occurrence.backtrace or []) if self.error_occurrence else []
        if not lines:
            return 'No backtrace available'
        return '\n'.join(lines[:MAX_BACKTRACE_LINES])

    def local_variables_section(self) -> str:
        variables = self.error_occurrence.local_variables if self.error_occurrence else None
        if not variables:
            return ''

        lines = ['## Local Variables', '']
        for name, value in list(variables.items())[:MAX_LOCAL_VARIABLES]:
            lines.append(f'- **{name}**: `{self.format_value(value)}`')
        return '\n'.join(lines)

    def format_value(self, value: Any) -> str:
        if isinstance(value, (dict, list)):
            text = json.dumps(value, separators=(',', ':'), default=str)
        elif isinstance(value, str):
            text = json.dumps(value)
        else:
            text = str(value)
        return truncate(text, MAX_VALUE_LENGTH)


def _format_time(value: Any) -> str:
    value = as_utc(value)
    return value.strftime('%Y-%m-%d %H:%M:%S UTC') if value else 'unknown'
