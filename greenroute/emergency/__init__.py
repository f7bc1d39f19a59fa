"""
Emergency Green Corridor System

Components:
- EmergencyPathfinder: Dijkstra over (hand-offs, travel time)
- CorridorPlanner: corridor windows and conflict deferral
- EmergencyCorridorManager: event lifecycle, tracking and restoration
- SignalCoordinator / OperatorChannel: collaborator interfaces
"""

from .pathfinder import (
    EmergencyPathfinder,
    EmergencyRoute,
)

from .corridor_planner import CorridorPlanner

from .signal_coordinator import (
    SignalCoordinator,
    OperatorChannel,
    LoggingSignalCoordinator,
    LoggingOperatorChannel,
)

from .corridor_manager import (
    EmergencyCorridorManager,
    get_corridor_manager,
    init_corridor_manager,
)


__all__ = [
    # Pathfinder
    "EmergencyPathfinder",
    "EmergencyRoute",

    # Planner
    "CorridorPlanner",

    # Collaborators
    "SignalCoordinator",
    "OperatorChannel",
    "LoggingSignalCoordinator",
    "LoggingOperatorChannel",

    # Corridor Manager
    "EmergencyCorridorManager",
    "get_corridor_manager",
    "init_corridor_manager",
]
