"""FastAPI / ASGI integration for Faultline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable
from urllib.parse import parse_qs

from ..boundary import RequestInfo
from . import current_boundary

if TYPE_CHECKING:
    from fastapi import FastAPI

    from ..boundary import InterceptionBoundary


class FaultlineASGIMiddleware:
    """
    ASGI middleware for Faultline.

    Can be used with any ASGI framework. In Starlette and FastAPI it sits
    inside ``ServerErrorMiddleware``, so unhandled route exceptions pass
    through it before being turned into a 500 response.

    Usage:
        from faultline.integrations.fastapi import FaultlineASGIMiddleware

        app = FaultlineASGIMiddleware(app)
    """

    def __init__(self, app: Any, boundary: 'InterceptionBoundary | None' = None) -> None:
        self.app = app
        self._boundary = boundary

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[[], Awaitable[dict[str, Any]]],
        send: Callable[[dict[str, Any]], Awaitable[None]],
    ) -> None:
        """Process ASGI request."""
        boundary = current_boundary(self._boundary)
        if scope['type'] != 'http' or boundary is None:
            await self.app(scope, receive, send)
            return

        with boundary.intercept(request_info_from_scope(scope)):
            await self.app(scope, receive, send)


def request_info_from_scope(scope: dict[str, Any]) -> RequestInfo:
    """Build a RequestInfo from an ASGI scope."""
    headers: dict[str, str] = {}
    for name, value in scope.get('headers', []):
        headers[name.decode('latin-1').title()] = value.decode('latin-1')

    query_string = scope.get('query_string', b'').decode('latin-1')
    params: dict[str, Any] = {}
    for name, values in parse_qs(query_string, keep_blank_values=True).items():
        params[name] = values[0] if len(values) == 1 else values
    params.update(scope.get('path_params') or {})

    path = scope.get('root_path', '') + scope.get('path', '')
    host = headers.get('Host')
    if host is None and scope.get('server'):
        server_host, server_port = scope['server']
        host = f'{server_host}:{server_port}'
    url = f"{scope.get('scheme', 'http')}://{host or 'localhost'}{path}"
    if query_string:
        url = f'{url}?{query_string}'

    forwarded = headers.get('X-Forwarded-For')
    client = scope.get('client')
    ip_address = forwarded.split(',')[0].strip() if forwarded else (client[0] if client else None)

    return RequestInfo(
        method=scope.get('method'),
        url=url,
        path=path,
        ip_address=ip_address,
        user_agent=headers.get('User-Agent'),
        headers=headers,
        params=params,
        raw=scope,
        user=scope.get('user'),
    )


def init_app(app: 'FastAPI', boundary: 'InterceptionBoundary | None' = None) -> None:
    """
    Initialize FastAPI app with Faultline.

    Usage:
        from fastapi import FastAPI
        from faultline.integrations.fastapi import init_app

        app = FastAPI()
        init_app(app)
    """
    app.add_middleware(FaultlineASGIMiddleware, boundary=boundary)
