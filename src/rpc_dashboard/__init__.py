"""Multi-RPC Dashboard - web dashboard and BFF for a hosted JSON-RPC gateway."""

__version__ = "1.0.0"
