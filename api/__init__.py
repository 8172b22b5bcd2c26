"""
API package for the State of Solana dashboard backend.

This package contains the FastAPI application that stores chart, table and
counter configurations in S3, serves pre-aggregated chart data and maps
natural-language questions to chart configurations.
"""

__version__ = "1.0.0"

# Don't import anything during package initialization to avoid import errors
# that could prevent the API server from starting.
# Individual modules will import what they need when they need it.

__all__ = []
