"""
Faultline

Exception tracking with grouping, local variable capture and notifications.

Usage:
    import faultline

    faultline.init(
        database_url='postgresql+psycopg://localhost/app',
        environment='production',
        notifiers=[SlackNotifier(webhook_url='https://hooks.slack.com/...')],
    )

    # Manually track an exception
    try:
        risky_operation()
    except Exception as e:
        faultline.track(e)
"""

from __future__ import annotations

import logging
from typing import Any

from .agent import FaultlineAgent
from .boundary import InterceptionBoundary, RequestInfo
from .config import FaultlineConfig, notifiers_from_env
from .issues import IssueResult
from .storage.models import ErrorOccurrence
from .tracker import TrackingContext

__version__ = '0.1.0'
__all__ = [
    'init',
    'shutdown',
    'track',
    'report',
    'create_issue',
    'get_agent',
    'is_initialized',
    'FaultlineConfig',
    'InterceptionBoundary',
    'RequestInfo',
    'TrackingContext',
]

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

_agent: FaultlineAgent | None = None


def init(config: FaultlineConfig | None = None, **options: Any) -> FaultlineAgent | None:
    """
    Initialize the Faultline agent.

    Args:
        config: A ready FaultlineConfig; if omitted one is built from ``options``
        **options: FaultlineConfig fields (database_url, environment, notifiers, ...).
            Unset fields fall back to FAULTLINE_* environment variables.

    Returns:
        The running agent, or None when tracking is disabled.
    """
    global _agent

    if _agent is not None:
        logger.warning('[Faultline] Agent already initialized')
        return _agent

    config = config or FaultlineConfig(**options)
    if not config.enabled:
        logger.info('[Faultline] Tracking disabled, agent not started')
        return None

    if not config.notifiers:
        config.notifiers = notifiers_from_env(config)

    _agent = FaultlineAgent(config)
    _agent.start()

    logger.info('[Faultline] Agent v%s initialized', __version__)
    logger.info('[Faultline] Environment: %s', config.environment)
    return _agent


def shutdown() -> None:
    """Shutdown the Faultline agent."""
    global _agent

    if _agent is None:
        return

    logger.info('[Faultline] Shutting down agent')
    _agent.stop()
    _agent = None


def track(
    exception: BaseException,
    context: dict | None = None,
) -> ErrorOccurrence | None:
    """
    Manually track an exception.

    Args:
        exception: The exception to track
        context: Additional context stored with the occurrence
    """
    if _agent is None:
        logger.warning('[Faultline] Agent not initialized')
        return None

    return _agent.track(exception, context)


def report(
    exception: BaseException,
    handled: bool = True,
    severity: str = 'error',
    context: dict | None = None,
    source: str | None = None,
) -> ErrorOccurrence | None:
    """
    Report an exception the application handled itself.

    Args:
        exception: The exception to report
        handled: Whether the application recovered from it
        severity: Free-form severity label (error, warning, ...)
        context: Additional context stored with the occurrence
        source: Where the report came from (a logger name, a job, ...)
    """
    if _agent is None:
        return None

    return _agent.report(exception, handled=handled, severity=severity, context=context, source=source)


def create_issue(group_id: int) -> IssueResult:
    """File a GitHub issue for an error group."""
    if _agent is None:
        return IssueResult(False, error='Agent not initialized', error_kind='not_configured')

    return _agent.create_issue(group_id)


def get_agent() -> FaultlineAgent | None:
    """The running agent, if any."""
    return _agent


def is_initialized() -> bool:
    """Check if the agent is initialized."""
    return _agent is not None
