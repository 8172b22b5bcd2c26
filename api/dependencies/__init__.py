"""
Dependencies package for the API server.

FastAPI dependencies for authentication and admin-request detection
in the State of Solana dashboard API.
"""

from .auth import get_current_user, is_admin_request

__all__ = ["get_current_user", "is_admin_request"]
