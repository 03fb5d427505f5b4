"""Faultline configuration management."""

from __future__ import annotations

import logging
import os
import re
import socket
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Pattern

if TYPE_CHECKING:
    from .notifiers.base import Notifier


DEFAULT_FILTER_KEYS = (
    'password',
    'passwd',
    'secret',
    'token',
    'key',
    'authorization',
    'cookie',
    'session',
    'credit_card',
    'card_number',
    'cvv',
    'ssn',
)

DEFAULT_IGNORED_EXCEPTIONS = (
    'KeyboardInterrupt',
    'SystemExit',
    'django.http.response.Http404',
    'werkzeug.exceptions.NotFound',
    'starlette.exceptions.HTTPException',
    'fastapi.exceptions.HTTPException',
)


def _env_list(name: str) -> list[str]:
    """Read a comma separated list from the environment."""
    raw = os.environ.get(name, '')
    return [item.strip() for item in raw.split(',') if item.strip()]


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes', 'on')


def _compile(pattern: str | Pattern[str]) -> Pattern[str]:
    if isinstance(pattern, str):
        return re.compile(pattern, re.IGNORECASE)
    return pattern


def exception_names(exc_type: type) -> set[str]:
    """Names an exception class can be matched by: bare and dotted."""
    names = {exc_type.__name__, exc_type.__qualname__}
    module = getattr(exc_type, '__module__', None)
    if module and module != 'builtins':
        names.add(f'{module}.{exc_type.__qualname__}')
    return names


@dataclass
class FaultlineConfig:
    """Configuration for the Faultline agent."""

    database_url: str | None = None
    environment: str | None = None
    app_name: str | None = None
    base_url: str | None = None
    enabled: bool | None = None

    ignored_exceptions: list[str] | None = None
    ignored_paths: list[str | Pattern[str]] | None = None
    ignored_user_agents: list[str | Pattern[str]] | None = None
    filter_keys: list[str] | None = None

    max_string_length: int | None = None
    max_capture_depth: int | None = None
    max_collection_size: int | None = None
    capture_local_variables: bool | None = None
    capture_uncaught: bool | None = None
    app_root: str | None = None

    # Seconds a reopened group keeps being flagged as a regression
    reopen_window: float | None = None
    connect_timeout: float | None = None
    read_timeout: float | None = None

    github_repo: str | None = None
    github_token: str | None = None
    github_labels: list[str] | None = None

    debug: bool | None = None

    # Hooks
    user_extractor: Callable[[Any], Any] | None = field(default=None, repr=False)
    custom_context: Callable[[Any], dict] | None = field(default=None, repr=False)
    before_track: Callable[[BaseException, Any], bool] | None = field(default=None, repr=False)
    after_track: Callable[[Any, Any], None] | None = field(default=None, repr=False)

    notifiers: list['Notifier'] = field(default_factory=list, repr=False)

    # Generated fields
    hostname: str = field(default_factory=socket.gethostname)

    def __post_init__(self) -> None:
        """Apply defaults from environment variables."""
        self.database_url = self.database_url or os.environ.get(
            'FAULTLINE_DATABASE_URL', 'sqlite:///faultline.db'
        )
        self.environment = self.environment or os.environ.get('FAULTLINE_ENVIRONMENT', 'production')
        self.app_name = self.app_name or os.environ.get('FAULTLINE_APP_NAME', 'app')
        self.base_url = self.base_url or os.environ.get('FAULTLINE_BASE_URL') or None
        self.enabled = self.enabled if self.enabled is not None else _env_bool('FAULTLINE_ENABLED', 'true')

        if self.ignored_exceptions is None:
            self.ignored_exceptions = _env_list('FAULTLINE_IGNORED_EXCEPTIONS') or list(DEFAULT_IGNORED_EXCEPTIONS)
        if self.ignored_paths is None:
            self.ignored_paths = _env_list('FAULTLINE_IGNORED_PATHS')
        if self.ignored_user_agents is None:
            self.ignored_user_agents = _env_list('FAULTLINE_IGNORED_USER_AGENTS')
        if self.filter_keys is None:
            self.filter_keys = _env_list('FAULTLINE_FILTER_KEYS') or list(DEFAULT_FILTER_KEYS)

        self.max_string_length = self.max_string_length if self.max_string_length is not None else int(
            os.environ.get('FAULTLINE_MAX_STRING_LENGTH', '500')
        )
        self.max_capture_depth = self.max_capture_depth if self.max_capture_depth is not None else int(
            os.environ.get('FAULTLINE_MAX_DEPTH', '10')
        )
        self.max_collection_size = self.max_collection_size if self.max_collection_size is not None else int(
            os.environ.get('FAULTLINE_MAX_COLLECTION_SIZE', '100')
        )
        self.capture_local_variables = self.capture_local_variables if self.capture_local_variables is not None else (
            _env_bool('FAULTLINE_CAPTURE_LOCALS', 'true')
        )
        self.capture_uncaught = self.capture_uncaught if self.capture_uncaught is not None else (
            _env_bool('FAULTLINE_CAPTURE_UNCAUGHT', 'true')
        )
        self.app_root = self.app_root or os.environ.get('FAULTLINE_APP_ROOT') or None

        self.reopen_window = self.reopen_window if self.reopen_window is not None else float(
            os.environ.get('FAULTLINE_REOPEN_WINDOW', '3600')
        )
        self.connect_timeout = self.connect_timeout if self.connect_timeout is not None else float(
            os.environ.get('FAULTLINE_CONNECT_TIMEOUT', '5')
        )
        self.read_timeout = self.read_timeout if self.read_timeout is not None else float(
            os.environ.get('FAULTLINE_READ_TIMEOUT', '10')
        )

        self.github_repo = self.github_repo or os.environ.get('FAULTLINE_GITHUB_REPO') or None
        self.github_token = self.github_token or os.environ.get('FAULTLINE_GITHUB_TOKEN') or None
        if self.github_labels is None:
            self.github_labels = _env_list('FAULTLINE_GITHUB_LABELS')

        self.debug = self.debug if self.debug is not None else _env_bool('FAULTLINE_DEBUG', 'false')

        self._path_patterns = [p for p in self.ignored_paths if not isinstance(p, str)]
        self._path_prefixes = [p for p in self.ignored_paths if isinstance(p, str)]
        self._user_agent_patterns = [_compile(p) for p in self.ignored_user_agents]

    @property
    def timeout(self) -> tuple[float, float]:
        """(connect, read) timeout pair for outbound calls."""
        return (self.connect_timeout, self.read_timeout)

    @property
    def process_id(self) -> str:
        return str(os.getpid())

    def is_ignored_exception(self, exception: BaseException) -> bool:
        """Check the exception class against the ignore list.

        Entries match the class itself by bare or dotted name; subclasses of an
        ignored class are not ignored unless listed too.
        """
        if not self.ignored_exceptions:
            return False
        return bool(exception_names(type(exception)) & set(self.ignored_exceptions))

    def is_ignored_path(self, path: str | None) -> bool:
        if not path:
            return False
        if any(path.startswith(prefix) for prefix in self._path_prefixes):
            return True
        return any(pattern.search(path) for pattern in self._path_patterns)

    def is_ignored_user_agent(self, user_agent: str | None) -> bool:
        if not user_agent:
            return False
        return any(pattern.search(user_agent) for pattern in self._user_agent_patterns)

    def configure_logging(self) -> None:
        """Raise the package logger to DEBUG when debug is on."""
        if self.debug:
            logging.getLogger('faultline').setLevel(logging.DEBUG)


def notifiers_from_env(config: FaultlineConfig) -> list['Notifier']:
    """Build notifier channels from FAULTLINE_* environment variables."""
    from .notifiers import ResendNotifier, SlackNotifier, TelegramNotifier, WebhookNotifier

    notifiers: list['Notifier'] = []

    slack_url = os.environ.get('FAULTLINE_SLACK_WEBHOOK_URL')
    if slack_url:
        notifiers.append(SlackNotifier(
            webhook_url=slack_url,
            channel=os.environ.get('FAULTLINE_SLACK_CHANNEL') or None,
            config=config,
        ))

    bot_token = os.environ.get('FAULTLINE_TELEGRAM_BOT_TOKEN')
    chat_id = os.environ.get('FAULTLINE_TELEGRAM_CHAT_ID')
    if bot_token and chat_id:
        notifiers.append(TelegramNotifier(bot_token=bot_token, chat_id=chat_id, config=config))

    resend_key = os.environ.get('FAULTLINE_RESEND_API_KEY')
    resend_to = _env_list('FAULTLINE_RESEND_TO')
    resend_from = os.environ.get('FAULTLINE_RESEND_FROM')
    if resend_key and resend_to and resend_from:
        notifiers.append(ResendNotifier(api_key=resend_key, to=resend_to, from_=resend_from, config=config))

    webhook_url = os.environ.get('FAULTLINE_WEBHOOK_URL')
    if webhook_url:
        notifiers.append(WebhookNotifier(
            url=webhook_url,
            method=os.environ.get('FAULTLINE_WEBHOOK_METHOD', 'POST'),
            config=config,
        ))

    return notifiers
