"""Message normalization and fingerprinting for error grouping."""

from __future__ import annotations

import hashlib
import re
from typing import Callable

from .serializer import truncate_string

HEX_ID_PATTERN = re.compile(r'\b[0-9a-fA-F]{24,}\b')
DIGITS_PATTERN = re.compile(r'\d+')

MAX_SANITIZED_LENGTH = 1000
MAX_BACKTRACE_FRAMES = 100

Location = tuple[str | None, int | None, str | None]


def sanitize_message(message: str | None) -> str:
    """Normalize a message so record ids do not split one fault into many groups.

    >>> sanitize_message('User 12345 not found')
    'User N not found'
    """
    if not message:
        return ''
    sanitized = HEX_ID_PATTERN.sub('ID', message)
    sanitized = DIGITS_PATTERN.sub('N', sanitized)
    return truncate_string(sanitized, MAX_SANITIZED_LENGTH)


def fingerprint(
    exception_class: str,
    message: str | None,
    file_path: str | None,
    line_number: int | None,
) -> str:
    """Stable group key over class, normalized message and location."""
    parts = [
        exception_class,
        sanitize_message(message),
        file_path or '',
        str(line_number or 0),
    ]
    return hashlib.sha256('\x1f'.join(parts).encode('utf-8')).hexdigest()


def exception_class_name(exception: BaseException) -> str:
    """Dotted class name, without the module for builtins."""
    exc_type = type(exception)
    module = getattr(exc_type, '__module__', None)
    if not module or module == 'builtins':
        return exc_type.__qualname__
    return f'{module}.{exc_type.__qualname__}'


def exception_message(exception: BaseException) -> str:
    try:
        return str(exception)
    except Exception:
        return f'<unprintable {type(exception).__name__}>'


def extract_location(
    exception: BaseException,
    is_app_path: Callable[[str], bool],
) -> Location:
    """Innermost application frame of the traceback as (path, line, function).

    Falls back to the innermost frame when no frame is application code.
    """
    tb = exception.__traceback__
    innermost = None
    app_frame = None

    while tb is not None:
        innermost = tb
        if is_app_path(tb.tb_frame.f_code.co_filename):
            app_frame = tb
        tb = tb.tb_next

    chosen = app_frame or innermost
    if chosen is None:
        return (None, None, None)

    code = chosen.tb_frame.f_code
    return (code.co_filename, chosen.tb_lineno, code.co_name)


def format_backtrace(exception: BaseException) -> list[str]:
    """Frame strings, innermost first."""
    frames: list[str] = []
    tb = exception.__traceback__

    while tb is not None:
        code = tb.tb_frame.f_code
        frames.append(f'{code.co_filename}:{tb.tb_lineno}:in {code.co_name}')
        tb = tb.tb_next

    frames.reverse()
    return frames[:MAX_BACKTRACE_FRAMES]
