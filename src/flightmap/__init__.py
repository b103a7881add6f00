"""
Flightmap - interactive timeline diagrams for project plans.

Lays out workstreams, milestones, activities and dependencies on a
horizontal timeline, lets milestones and workstream lanes be dragged, and
persists the resulting positions.

Example:
    >>> from flightmap import FlightmapDiagram
    >>> diagram = FlightmapDiagram(plan_data)
    >>> result = diagram.recompute()
    >>> result.coordinates["12"].y in result.band_centers.values()
    True

Debug Mode Example:
    >>> diagram = FlightmapDiagram(plan_data, debug=True)
    >>> diagram.recompute()
    >>> print(diagram.get_trace().summary())
"""

from .config import ClientSettings, LayoutConfig, Margins, UpsertFailurePolicy
from .connections import Connection, ConnectionIndexer, ConnectionKind, ConnectionPath
from .debug import TracedRenderer, describe_layout
from .diagram import FlightmapDiagram
from .drag import DragController, DragState, MilestoneDrop, WorkstreamDrop
from .errors import DragStateError, FlightmapError, PlanError, PositionStoreError
from .hierarchy import HierarchyFlattener, flatten_plan, parse_deadline
from .layout import BandGeometry, CoordinateArena, LayoutEngine, LayoutResult
from .models import (
    Activity,
    Coordinate,
    Dependency,
    DuplicateCause,
    DuplicatePlacement,
    FlatPlan,
    Milestone,
    MilestoneStatus,
    NodeType,
    OriginalPlacement,
    Placement,
    PositionUpsert,
    RemoteNodePosition,
    Workstream,
)
from .positions import LocalPositionCache, PositionStore
from .remote import (
    HttpMilestoneClient,
    HttpPositionBackend,
    InMemoryPositionBackend,
    PositionBackend,
)
from .renderer import DiagramRenderer, NullRenderer
from .scheduler import AsyncioScheduler, Scheduler
from .synthesis import PlacementSynthesizer
from .timeline import TimelineIndex, TimeScale
from .tracer import InteractionTrace, PipelineStage, TraceEvent

__version__ = "0.3.0"

__all__ = [
    # Main API
    "FlightmapDiagram",
    # Configuration
    "LayoutConfig",
    "Margins",
    "ClientSettings",
    "UpsertFailurePolicy",
    # Plan input
    "HierarchyFlattener",
    "flatten_plan",
    "parse_deadline",
    "FlatPlan",
    "Workstream",
    "Milestone",
    "MilestoneStatus",
    "Activity",
    "Dependency",
    # Placements
    "PlacementSynthesizer",
    "Placement",
    "OriginalPlacement",
    "DuplicatePlacement",
    "DuplicateCause",
    # Timeline & layout
    "TimelineIndex",
    "TimeScale",
    "LayoutEngine",
    "LayoutResult",
    "CoordinateArena",
    "BandGeometry",
    "Coordinate",
    # Connections
    "ConnectionIndexer",
    "Connection",
    "ConnectionKind",
    "ConnectionPath",
    # Interaction
    "DragController",
    "DragState",
    "MilestoneDrop",
    "WorkstreamDrop",
    "DiagramRenderer",
    "NullRenderer",
    "Scheduler",
    "AsyncioScheduler",
    # Persistence
    "PositionStore",
    "LocalPositionCache",
    "PositionBackend",
    "HttpPositionBackend",
    "InMemoryPositionBackend",
    "HttpMilestoneClient",
    "NodeType",
    "RemoteNodePosition",
    "PositionUpsert",
    # Errors
    "FlightmapError",
    "PlanError",
    "PositionStoreError",
    "DragStateError",
    # Debug/Tracing (for development and debugging)
    "InteractionTrace",
    "PipelineStage",
    "TraceEvent",
    "TracedRenderer",
    "describe_layout",
]
