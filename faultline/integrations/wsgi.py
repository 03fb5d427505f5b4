"""WSGI middleware for Faultline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator
from urllib.parse import parse_qs
from wsgiref.util import request_uri

from ..boundary import RequestInfo
from . import current_boundary

if TYPE_CHECKING:
    from ..boundary import InterceptionBoundary


def request_info_from_environ(environ: dict[str, Any]) -> RequestInfo:
    """Build a RequestInfo from a WSGI environ."""
    headers: dict[str, str] = {}
    for key, value in environ.items():
        if key.startswith('HTTP_'):
            headers[key[5:].replace('_', '-').title()] = str(value)
    for key in ('CONTENT_TYPE', 'CONTENT_LENGTH'):
        if environ.get(key):
            headers[key.replace('_', '-').title()] = str(environ[key])

    params: dict[str, Any] = {}
    for name, values in parse_qs(environ.get('QUERY_STRING', ''), keep_blank_values=True).items():
        params[name] = values[0] if len(values) == 1 else values

    forwarded = environ.get('HTTP_X_FORWARDED_FOR')
    ip_address = forwarded.split(',')[0].strip() if forwarded else environ.get('REMOTE_ADDR')

    try:
        url = request_uri(environ)
    except KeyError:
        url = environ.get('PATH_INFO')

    return RequestInfo(
        method=environ.get('REQUEST_METHOD'),
        url=url,
        path=environ.get('SCRIPT_NAME', '') + environ.get('PATH_INFO', ''),
        ip_address=ip_address,
        user_agent=environ.get('HTTP_USER_AGENT'),
        headers=headers,
        params=params,
        raw=environ,
    )


class FaultlineWSGIMiddleware:
    """
    WSGI middleware for Faultline.

    Usage:
        from faultline.integrations.wsgi import FaultlineWSGIMiddleware

        app = FaultlineWSGIMiddleware(app)
    """

    def __init__(self, app: Callable[..., Iterable[bytes]], boundary: 'InterceptionBoundary | None' = None) -> None:
        self.app = app
        self._boundary = boundary

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        boundary = current_boundary(self._boundary)
        if boundary is None:
            return self.app(environ, start_response)

        scope = boundary.trap.arm() if boundary.config.capture_local_variables else None
        try:
            response = self.app(environ, start_response)
        except Exception as e:
            boundary.handle_exception(e, request_info_from_environ(environ), scope)
            raise
        finally:
            if scope is not None:
                boundary.trap.disarm(scope)
        return _TrackedResponse(response, boundary, environ)


class _TrackedResponse:
    """Response iterator that reports errors raised while streaming the body."""

    def __init__(self, response: Iterable[bytes], boundary: 'InterceptionBoundary', environ: dict[str, Any]) -> None:
        self.response = response
        self.boundary = boundary
        self.environ = environ
        self._chunks: Iterator[bytes] | None = None

    def __iter__(self) -> '_TrackedResponse':
        return self

    def __next__(self) -> bytes:
        if self._chunks is None:
            self._chunks = iter(self.response)
        try:
            return next(self._chunks)
        except StopIteration:
            raise
        except Exception as e:
            self.boundary.handle_exception(e, request_info_from_environ(self.environ))
            raise

    def close(self) -> None:
        close = getattr(self.response, 'close', None)
        if close is not None:
            close()
