"""
Connection indexing.

Builds a networkx multigraph of every drawable connection keyed by placement
id, so that moving one node only touches the connections incident to it.

Connection kinds:
- activity: same-lane activity from its source to a target milestone
- cross_activity: activity source to the activity's duplicate of a
  milestone in another lane
- dependency: same-lane dependency
- duplicate_dependency: dependency duplicate to the dependent milestone in
  the target lane
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

import networkx as nx

from .layout import CoordinateArena
from .models import (
    Coordinate,
    FlatPlan,
    Placement,
    activity_duplicate_key,
    dependency_duplicate_key,
)

logger = logging.getLogger(__name__)


class ConnectionKind(str, Enum):
    ACTIVITY = "activity"
    CROSS_ACTIVITY = "cross_activity"
    DEPENDENCY = "dependency"
    DUPLICATE_DEPENDENCY = "duplicate_dependency"


@dataclass(frozen=True)
class Connection:
    """
    A drawable link between two placements.

    Attributes:
        id: Stable connection id.
        kind: Connection kind.
        source_id: Source placement id.
        target_id: Target placement id.
        workstream_id: Lane the connection is drawn in.
        activity_id: Activity behind the connection, if any.
        curve_offset: Symmetric offset for parallel activities between the
            same pair of placements (0 when the link is alone).
    """

    id: str
    kind: ConnectionKind
    source_id: str
    target_id: str
    workstream_id: int
    activity_id: Optional[int] = None
    curve_offset: float = 0.0


@dataclass(frozen=True)
class ConnectionPath:
    """A connection with its endpoints resolved from the arena."""

    connection: Connection
    source: Coordinate
    target: Coordinate


class ConnectionIndexer:
    """
    Finds the connections touching a placement.

    Example:
        >>> indexer = ConnectionIndexer(plan, placements, engine.arena)
        >>> [c.id for c in indexer.connections_for("12")]
        ['activity-3-12-14', 'dependency-9-12']
    """

    def __init__(self, plan: FlatPlan, placements: Iterable[Placement], arena: CoordinateArena):
        self.arena = arena
        self.graph: nx.MultiDiGraph = nx.MultiDiGraph()
        self._placement_lanes: Dict[str, int] = {}
        self._connections: Dict[str, Connection] = {}

        for placement in placements:
            self._placement_lanes[placement.id] = placement.placement_workstream_id
            self.graph.add_node(placement.id)
        self._index(plan)

    def _index(self, plan: FlatPlan) -> None:
        milestones = plan.milestone_index()

        # Same-lane activities, grouped by endpoint pair for curve offsets
        pairs: Dict[Tuple[int, int], List[int]] = {}
        activity_lanes = {}
        for activity in plan.activities:
            activity_lanes[activity.id] = activity.workstream_id
            for target_id in activity.target_milestone_ids:
                target = milestones.get(target_id)
                if target is None or target.workstream_id != activity.workstream_id:
                    continue
                pairs.setdefault((activity.source_milestone_id, target_id), []).append(activity.id)

            for target_id in activity.cross_lane_candidates:
                target = milestones.get(target_id)
                if target is None or target.workstream_id == activity.workstream_id:
                    continue
                self._add(
                    Connection(
                        id=f"cross-activity-{activity.id}-{target_id}",
                        kind=ConnectionKind.CROSS_ACTIVITY,
                        source_id=str(activity.source_milestone_id),
                        target_id=activity_duplicate_key(target_id, activity.id),
                        workstream_id=activity.workstream_id,
                        activity_id=activity.id,
                    )
                )

        for (source_id, target_id), activity_ids in pairs.items():
            count = len(activity_ids)
            for index, activity_id in enumerate(activity_ids):
                self._add(
                    Connection(
                        id=f"activity-{activity_id}-{source_id}-{target_id}",
                        kind=ConnectionKind.ACTIVITY,
                        source_id=str(source_id),
                        target_id=str(target_id),
                        workstream_id=activity_lanes[activity_id],
                        activity_id=activity_id,
                        curve_offset=index - (count - 1) / 2,
                    )
                )

        for dep in plan.dependencies:
            source = milestones.get(dep.source)
            target = milestones.get(dep.target)
            if source is None or target is None:
                continue
            if source.workstream_id == target.workstream_id:
                self._add(
                    Connection(
                        id=f"dependency-{source.id}-{target.id}",
                        kind=ConnectionKind.DEPENDENCY,
                        source_id=str(source.id),
                        target_id=str(target.id),
                        workstream_id=target.workstream_id,
                    )
                )
            else:
                self._add(
                    Connection(
                        id=f"duplicate-dependency-{source.id}-{target.id}",
                        kind=ConnectionKind.DUPLICATE_DEPENDENCY,
                        source_id=dependency_duplicate_key(source.id, target.id),
                        target_id=str(target.id),
                        workstream_id=target.workstream_id,
                    )
                )

    def _add(self, connection: Connection) -> None:
        missing = [
            node
            for node in (connection.source_id, connection.target_id)
            if node not in self._placement_lanes
        ]
        if missing:
            logger.debug("Not indexing %s: no placement for %s", connection.id, missing)
            return
        if connection.id in self._connections:
            return
        self._connections[connection.id] = connection
        self.graph.add_edge(
            connection.source_id, connection.target_id, key=connection.id, connection=connection
        )

    def connections_for(self, placement_id: str) -> List[Connection]:
        """Connections with ``placement_id`` as source or target."""
        if placement_id not in self.graph:
            return []
        found: Dict[str, Connection] = {}
        for _, _, data in self.graph.out_edges(placement_id, data=True):
            found.setdefault(data["connection"].id, data["connection"])
        for _, _, data in self.graph.in_edges(placement_id, data=True):
            found.setdefault(data["connection"].id, data["connection"])
        return list(found.values())

    def connections_for_workstream(self, workstream_id: int) -> List[Connection]:
        """Connections drawn in the lane of ``workstream_id``."""
        return [c for c in self._connections.values() if c.workstream_id == workstream_id]

    def connections_touching_workstream(self, workstream_id: int) -> List[Connection]:
        """Connections with an endpoint placed in ``workstream_id``."""
        members = [pid for pid, lane in self._placement_lanes.items() if lane == workstream_id]
        found: Dict[str, Connection] = {}
        for placement_id in members:
            for connection in self.connections_for(placement_id):
                found.setdefault(connection.id, connection)
        return list(found.values())

    def all_connections(self) -> List[Connection]:
        return list(self._connections.values())

    def resolve(self, connections: Iterable[Connection]) -> List[ConnectionPath]:
        """Attach current arena coordinates; connections lacking one are skipped."""
        paths = []
        for connection in connections:
            source = self.arena.get(connection.source_id)
            target = self.arena.get(connection.target_id)
            if source is None or target is None:
                continue
            paths.append(ConnectionPath(connection, source, target))
        return paths

    def paths_for(self, placement_id: str) -> List[ConnectionPath]:
        return self.resolve(self.connections_for(placement_id))
