"""API v1 endpoints package."""

from src.api.v1.endpoints import cache, companion

__all__ = ["cache", "companion"]
