"""API routes package."""

from replicator.routes.health_routes import router as health_router

__all__ = ["health_router"]
