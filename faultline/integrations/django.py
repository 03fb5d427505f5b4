"""Django integration for Faultline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from ..boundary import RequestInfo
from . import current_boundary

if TYPE_CHECKING:
    from django.http import HttpRequest, HttpResponse

    from ..boundary import InterceptionBoundary


class FaultlineMiddleware:
    """Django middleware for capturing exceptions with request context.

    Usage in settings.py:
        MIDDLEWARE = [
            ...
            'faultline.integrations.django.FaultlineMiddleware',
        ]

    Django converts view exceptions into responses before they leave
    ``get_response``, so they are reported from ``process_exception``.
    """

    def __init__(
        self,
        get_response: Callable[['HttpRequest'], 'HttpResponse'],
        boundary: 'InterceptionBoundary | None' = None,
    ) -> None:
        self.get_response = get_response
        self._boundary = boundary

    def __call__(self, request: 'HttpRequest') -> 'HttpResponse':
        """Arm the capture trap around the request."""
        boundary = current_boundary(self._boundary)
        if boundary is None or not boundary.config.capture_local_variables:
            return self.get_response(request)

        scope = boundary.trap.arm()
        request.faultline_scope = scope
        try:
            return self.get_response(request)
        finally:
            boundary.trap.disarm(scope)

    def process_exception(
        self,
        request: 'HttpRequest',
        exception: Exception,
    ) -> None:
        """Process exceptions raised by the view."""
        boundary = current_boundary(self._boundary)
        if boundary is None:
            return None

        scope = getattr(request, 'faultline_scope', None)
        boundary.handle_exception(exception, build_request_info(request), scope)
        # Let Django render its own error response
        return None


def build_request_info(request: 'HttpRequest') -> RequestInfo:
    """Build a RequestInfo from a Django request."""
    headers: dict[str, str] = {}
    for key, value in request.META.items():
        if key.startswith('HTTP_'):
            headers[key[5:].replace('_', '-').title()] = str(value)

    params: dict[str, Any] = {}
    for source in (request.GET, request.POST):
        for key, values in source.lists():
            params[key] = values[0] if len(values) == 1 else values

    forwarded = request.META.get('HTTP_X_FORWARDED_FOR')
    ip_address = forwarded.split(',')[0].strip() if forwarded else request.META.get('REMOTE_ADDR')

    user = getattr(request, 'user', None)
    if user is not None and not getattr(user, 'is_authenticated', False):
        user = None

    return RequestInfo(
        method=request.method,
        url=request.build_absolute_uri(),
        path=request.path,
        ip_address=ip_address,
        user_agent=request.META.get('HTTP_USER_AGENT'),
        headers=headers,
        params=params,
        raw=request,
        user=user,
    )
