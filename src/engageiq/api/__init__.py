"""HTTP surface: health, cache and job endpoints plus caching middleware."""

from engageiq.api.app import create_app

__all__ = ["create_app"]
