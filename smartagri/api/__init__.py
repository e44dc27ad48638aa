"""
FastAPI alert service.

Provides the REST and WebSocket surface for:
- /alerts - Create, query, acknowledge and dismiss alerts
- /subscriptions - Notification subscriptions
- /ws/alerts - Alert streaming
- /health - Service health check
"""

from smartagri.api.app import create_app

__all__ = ["create_app"]
