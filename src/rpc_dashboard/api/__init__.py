"""Multi-RPC dashboard API layer.

This package contains the FastAPI application for the dashboard service:
- Auth dependencies and request middleware
- Billing and Stripe webhooks
- JSON-RPC proxy and endpoint monitoring routes
- User, API key and settings routes
"""

from .app import create_app

__all__ = ["create_app"]
