"""
API Routes Package

This module exports all FastAPI routers for the GreenRoute service.
"""

from .network_routes import router as network_router
from .routing_routes import router as routing_router
from .emergency_routes import router as emergency_router
from .system_routes import router as system_router

__all__ = [
    "network_router",
    "routing_router",
    "emergency_router",
    "system_router",
]
