"""
Telemetry Module
================

Observability stack for the StorePulse backend.

Components:
- sentry.py: Error tracking for API requests and background sync runs

Environment Variables:
- SENTRY_DSN: Sentry project DSN

Usage:
    from storepulse.telemetry import init_observability

    # Initialize on app startup
    init_observability()

Related modules:
- storepulse/main.py: Initializes observability on startup
- storepulse/deps.py: Sets tenant context after authentication
"""

from storepulse.telemetry.sentry import (
    init_sentry,
    set_tenant_context,
    capture_exception,
    capture_message,
)


def init_observability() -> dict:
    """
    Initialize all observability tools.

    Returns:
        Dict with status of each tool initialization, e.g. {"sentry": False}
    """
    return {
        "sentry": init_sentry(),
    }


__all__ = [
    "init_observability",
    "init_sentry",
    "set_tenant_context",
    "capture_exception",
    "capture_message",
]
