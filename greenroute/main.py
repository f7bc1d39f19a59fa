"""
GreenRoute - Route Distribution & Emergency Corridor Service
Main FastAPI Application Entry Point

Wires the road graph, routing service, corridor manager and recalculation
scheduler together and exposes them over HTTP and Socket.IO.

Run with:
    uvicorn greenroute.main:sio_app --port 8000
"""

import json
import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import socketio
import yaml
from dotenv import load_dotenv

from greenroute import __version__
from greenroute.analytics import JsonLogAnalyticsSink, set_analytics
from greenroute.config import ConfigManager
from greenroute.emergency import get_corridor_manager, init_corridor_manager
from greenroute.errors import InvalidTopologyError
from greenroute.graph import get_road_graph, init_road_graph
from greenroute.logging_utils import configure_logging
from greenroute.models import Intersection, RoadSegment
from greenroute.routing import LoadBalancer, RouteOptimizer, get_routing_service, init_routing_service
from greenroute.scheduler import get_scheduler, init_scheduler
from greenroute.websocket import WebSocketEmitter, WebSocketHandlers, get_handlers, set_emitter, set_handlers

# Load environment variables
load_dotenv()
configure_logging()

logger = logging.getLogger(__name__)

# Create Socket.IO server
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*',
    logger=False,
    engineio_logger=False,
    ping_interval=25,
    ping_timeout=60,
)


def _load_network_file(graph, path: str):
    """Preload a network definition (YAML or JSON with intersections and segments)"""
    file_path = Path(path)
    with open(file_path, 'r') as f:
        data = json.load(f) if file_path.suffix == '.json' else yaml.safe_load(f)

    intersections = [Intersection(**item) for item in data.get('intersections', [])]
    segments = [RoadSegment(**item) for item in data.get('segments', [])]
    graph.load_network(intersections, segments)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events - startup and shutdown"""
    logger.info("=" * 60)
    logger.info("[STARTUP] GreenRoute %s", __version__)
    logger.info("=" * 60)

    cfg = ConfigManager(os.getenv("GREENROUTE_CONFIG_DIR"))
    logger.info("[OK] Configuration loaded from %s", cfg.config_dir)

    analytics = JsonLogAnalyticsSink(max_records=int(os.getenv("GREENROUTE_ANALYTICS_BUFFER", "1000")))
    set_analytics(analytics)

    ws_emitter = WebSocketEmitter(sio)
    set_emitter(ws_emitter)
    set_handlers(WebSocketHandlers(sio, ws_emitter))
    logger.info("[OK] WebSocket emitter and handlers initialized")

    graph = init_road_graph(cfg.get_graph_config())
    network_file = os.getenv("GREENROUTE_NETWORK_FILE")
    if network_file:
        try:
            _load_network_file(graph, network_file)
        except (OSError, ValueError, InvalidTopologyError) as e:
            logger.error("[STARTUP] Network preload from %s failed: %s", network_file, e)

    optimizer = RouteOptimizer(cfg.get_routing_config())
    balancer = LoadBalancer(
        optimizer,
        cfg.get_load_balancer_config(),
        congestion=graph.congestion,
        analytics=analytics,
    )
    routing_service = init_routing_service(
        graph,
        optimizer=optimizer,
        balancer=balancer,
        config=cfg.get_routing_config(),
    )
    logger.info("[OK] Routing service initialized")

    corridor_manager = init_corridor_manager(
        graph,
        signal_coordinator=ws_emitter,
        operator_channel=ws_emitter,
        analytics=analytics,
        config=cfg.get_emergency_config(),
    )
    logger.info("[OK] Corridor manager initialized")

    scheduler = init_scheduler(graph, config=cfg.get_scheduler_config(), analytics=analytics)
    scheduler.add_publish_listener(routing_service.on_snapshot_published)
    scheduler.add_publish_listener(corridor_manager.on_snapshot_published)
    scheduler.add_publish_listener(ws_emitter.emit_snapshot_published)

    await scheduler.start()
    await corridor_manager.start()
    logger.info("[SERVER] Ready")

    yield

    logger.info("[SHUTDOWN] Shutting down...")
    await scheduler.stop()
    await corridor_manager.stop()
    corridor_manager.shutdown()
    routing_service.shutdown()
    logger.info("[SHUTDOWN] Complete")


# Create FastAPI application
app = FastAPI(
    title="GreenRoute API",
    description="Congestion-aware route distribution and emergency green corridors",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# Include API Routers
# ============================================

from greenroute.api import (  # noqa: E402
    network_router,
    routing_router,
    emergency_router,
    system_router,
)

# Network routes: /api/network, /api/telemetry/congestion
app.include_router(network_router)

# Routing routes: /api/routes, /api/routes/batch
app.include_router(routing_router)

# Emergency routes: /api/emergency/*
app.include_router(emergency_router)

# System routes: /api/scheduler/*, /api/analytics/*
app.include_router(system_router)


# ============================================
# Root Endpoints
# ============================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint - API information"""
    return {
        "name": "GreenRoute",
        "version": __version__,
        "status": "operational",
        "documentation": "/docs",
        "endpoints": {
            "network": "/api/network",
            "telemetry": "/api/telemetry/congestion",
            "routes": "/api/routes",
            "emergency": "/api/emergency/*",
            "scheduler": "/api/scheduler/*",
            "analytics": "/api/analytics/recent",
        },
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint"""
    graph = get_road_graph()
    scheduler = get_scheduler()
    manager = get_corridor_manager()
    service = get_routing_service()
    handlers = get_handlers()

    return {
        "status": "healthy" if graph else "starting",
        "timestamp": time.time(),
        "snapshotVersion": graph.current_snapshot().version if graph else None,
        "schedulerRunning": scheduler.running if scheduler else False,
        "activeEmergencies": len(manager.events) if manager else 0,
        "pendingBatches": service.pending_batches if service else 0,
        "websocket": {
            "connected_clients": handlers.get_client_count() if handlers else 0,
        },
    }


# ============================================
# Create Socket.IO ASGI app
# ============================================

sio_app = socketio.ASGIApp(sio, app)
