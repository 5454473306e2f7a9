"""API routers."""

from engageiq.api.routers import cache, health, jobs, metrics

__all__ = ["cache", "health", "jobs", "metrics"]
