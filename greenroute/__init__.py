"""
GreenRoute

Congestion-aware route distribution and emergency green-corridor
coordination for city traffic management.

Packages:
- graph: live weighted road network and immutable snapshots
- routing: route optimizer, load balancer, routing service
- emergency: corridor pathfinding, planning and lifecycle management
- scheduler: snapshot recalculation triggers
"""

__version__ = "1.0.0"
