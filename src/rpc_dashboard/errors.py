"""Domain exceptions raised by services and mapped to HTTP responses by the API layer."""

from __future__ import annotations


class DashboardError(Exception):
    """Base class for errors that carry an HTTP status code."""

    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(DashboardError):
    """Request payload failed validation."""

    status_code = 400


class AuthenticationError(DashboardError):
    """Missing or invalid credentials."""

    status_code = 401


class NotFoundError(DashboardError):
    """Requested resource does not exist or is not owned by the caller."""

    status_code = 404


class BillingError(DashboardError):
    """Stripe call failed."""

    status_code = 502


class BackendUnavailableError(DashboardError):
    """The Multi-RPC backend could not be reached or returned an error."""

    status_code = 503
