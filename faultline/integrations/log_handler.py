"""Logging handler that reports logged exceptions to Faultline."""

from __future__ import annotations

import logging
from typing import Any


def configure_logging(level: str = 'ERROR') -> dict[str, Any]:
    """
    Returns a dictConfig LOGGING configuration that reports to Faultline.

    Usage in Django settings.py:
        from faultline.integrations.log_handler import configure_logging

        LOGGING = configure_logging()
    """
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'handlers': {
            'faultline': {
                'class': 'faultline.integrations.log_handler.FaultlineLoggingHandler',
                'level': level,
            },
        },
        'root': {
            'handlers': ['faultline'],
            'level': level,
        },
    }


class FaultlineLoggingHandler(logging.Handler):
    """Reports log records carrying ``exc_info`` as handled exceptions."""

    def __init__(self, level: int = logging.ERROR) -> None:
        super().__init__(level)

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record."""
        # Our own failures are logged with exc_info; reporting them would recurse
        if record.name == 'faultline' or record.name.startswith('faultline.'):
            return
        if not record.exc_info or record.exc_info[1] is None:
            return

        import faultline

        try:
            faultline.report(
                record.exc_info[1],
                handled=True,
                severity=record.levelname.lower(),
                context={'logger': record.name, 'log_message': record.getMessage()},
                source=record.name,
            )
        except Exception:
            self.handleError(record)
