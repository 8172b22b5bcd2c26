"""
Authentication package for the API server.

Google/NextAuth JWT verification used by the admin and user-data routes
of the State of Solana dashboard API.
"""

from .jwt_auth import verify_google_jwt

__all__ = ["verify_google_jwt"]
