"""API routers for the identisnap service."""

from identisnap.routers import health, info, locate, locations, match

__all__ = ["health", "info", "locate", "locations", "match"]
