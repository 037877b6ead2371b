"""API route modules."""

from sophia.api.routes import brain, health, metrics

__all__ = ["brain", "health", "metrics"]
