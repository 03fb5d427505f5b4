"""Framework integrations for Faultline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..boundary import InterceptionBoundary


def current_boundary(explicit: 'InterceptionBoundary | None' = None) -> 'InterceptionBoundary | None':
    """The boundary to use: an explicit one, else the running agent's."""
    if explicit is not None:
        return explicit

    import faultline

    agent = faultline.get_agent()
    return agent.boundary if agent is not None else None
