"""Flask integration for Faultline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ..boundary import RequestInfo
from . import current_boundary

if TYPE_CHECKING:
    from flask import Flask

    from ..boundary import InterceptionBoundary


class FlaskIntegration:
    """Flask extension for Faultline.

    Flask turns view exceptions into 500 responses itself, so a WSGI
    middleware never sees them; this extension hooks the request signals
    instead.
    """

    def __init__(self, app: 'Flask | None' = None, boundary: 'InterceptionBoundary | None' = None) -> None:
        self.app = app
        self._boundary = boundary
        if app is not None:
            self.init_app(app)

    @property
    def boundary(self) -> 'InterceptionBoundary | None':
        return current_boundary(self._boundary)

    def init_app(self, app: 'Flask') -> None:
        """Initialize the Flask application with Faultline."""
        from flask import got_request_exception

        # Arm the capture trap before each request
        @app.before_request
        def before_request() -> None:
            from flask import g

            boundary = self.boundary
            if boundary is not None and boundary.config.capture_local_variables:
                g.faultline_scope = boundary.trap.arm()

        @app.teardown_request
        def teardown_request(error: BaseException | None = None) -> None:
            from flask import g

            scope = g.pop('faultline_scope', None)
            boundary = self.boundary
            if scope is not None and boundary is not None:
                boundary.trap.disarm(scope)

        got_request_exception.connect(self._handle_exception, app, weak=False)

        # Store extensions reference
        if not hasattr(app, 'extensions'):
            app.extensions = {}
        app.extensions['faultline'] = self

    def _handle_exception(self, sender: Any, exception: BaseException, **extra: Any) -> None:
        from flask import g

        boundary = self.boundary
        if boundary is None:
            return
        boundary.handle_exception(exception, self._build_request_info(), g.get('faultline_scope'))

    def _build_request_info(self) -> RequestInfo:
        """Build a RequestInfo from the Flask request."""
        from flask import g, request

        params: dict[str, Any] = {}
        for key, values in request.args.lists():
            params[key] = values[0] if len(values) == 1 else values
        if request.form:
            params.update(request.form.to_dict())
        if request.view_args:
            params.update(request.view_args)

        return RequestInfo(
            method=request.method,
            url=request.url,
            path=request.path,
            ip_address=request.access_route[0] if request.access_route else request.remote_addr,
            user_agent=request.headers.get('User-Agent'),
            headers={key: str(value) for key, value in request.headers},
            params=params,
            raw=request,
            user=g.get('user'),
        )


def init_app(app: 'Flask', boundary: 'InterceptionBoundary | None' = None) -> FlaskIntegration:
    """
    Initialize Flask app with Faultline.

    Usage:
        from flask import Flask
        from faultline.integrations.flask import init_app

        app = Flask(__name__)
        init_app(app)
    """
    return FlaskIntegration(app, boundary)
