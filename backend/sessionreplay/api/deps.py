"""Request dependencies."""
from fastapi import Request

from sessionreplay.container import ReplayServices


def get_services(request: Request) -> ReplayServices:
    """Services built by ``create_app`` and stored on the application."""
    return request.app.state.services
