"""HTTP surface for triggering and inspecting event processing."""

from eventpulse.api.http import create_app, create_router

__all__ = ["create_app", "create_router"]
