"""API routes for the ad-content pipeline."""

from talkar.api import cache_routes, performance_routes, routes, websocket

__all__ = ["routes", "cache_routes", "performance_routes", "websocket"]
