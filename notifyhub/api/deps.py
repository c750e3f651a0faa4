"""Shared API dependencies."""

from fastapi import Request

from notifyhub.subscribers.registry import RuleRegistry


def get_registry(request: Request) -> RuleRegistry:
    """The application's rule registry, attached to app.state by create_app."""
    return request.app.state.registry
