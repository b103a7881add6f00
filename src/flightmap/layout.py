"""
Layout module for flightmap diagrams.

Computes a pixel coordinate for every placement and keeps them in a single
keyed arena shared by the drag controller, the connection indexer and the
renderer.

- x comes from the timeline scale (undated milestones sit at a fixed x).
- y comes from the placement's workstream band center, spread symmetrically
  when several placements share a deadline and lane, and overridden by stored
  positions the user has clearly adjusted.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from .config import LayoutConfig
from .models import Coordinate, FlatPlan, Placement
from .timeline import TimelineIndex

if TYPE_CHECKING:
    from .tracer import InteractionTrace

logger = logging.getLogger(__name__)

WORKSTREAM_KEY_PREFIX = "ws-"

GroupKey = Tuple[Union[date, str], int]


def workstream_key(workstream_id: int) -> str:
    """Arena key of a workstream band."""
    return f"{WORKSTREAM_KEY_PREFIX}{workstream_id}"


class CoordinateArena:
    """
    Keyed store of coordinates.

    Placements are keyed by placement id, workstream bands by
    ``workstream_key(id)`` (x is always 0 for bands). All reads and writes go
    through the accessors below; records are immutable ``Coordinate`` values,
    so callers never alias live state.
    """

    def __init__(self):
        self._records: Dict[str, Coordinate] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, key: str) -> Optional[Coordinate]:
        return self._records.get(key)

    def set(self, key: str, x: float, y: float) -> Coordinate:
        coordinate = Coordinate(x, y)
        self._records[key] = coordinate
        return coordinate

    def update(
        self, key: str, x: Optional[float] = None, y: Optional[float] = None
    ) -> Optional[Coordinate]:
        """Change one or both axes of an existing record; None if absent."""
        current = self._records.get(key)
        if current is None:
            return None
        coordinate = Coordinate(current.x if x is None else x, current.y if y is None else y)
        self._records[key] = coordinate
        return coordinate

    def get_band(self, workstream_id: int) -> Optional[float]:
        record = self._records.get(workstream_key(workstream_id))
        return record.y if record is not None else None

    def set_band(self, workstream_id: int, center_y: float) -> Coordinate:
        return self.set(workstream_key(workstream_id), 0.0, center_y)

    def remove(self, key: str) -> None:
        self._records.pop(key, None)

    def clear(self) -> None:
        self._records.clear()

    def snapshot(self) -> Dict[str, Coordinate]:
        """Copy of every record."""
        return dict(self._records)


@dataclass(frozen=True)
class BandGeometry:
    """
    Vertical extent of a workstream band.

    Attributes:
        center: Band center y.
        top: Top edge y.
        bottom: Bottom edge y.
        padding: Inset from each edge that placements must respect.
    """

    center: float
    top: float
    bottom: float
    padding: float

    @classmethod
    def around(cls, center: float, config: LayoutConfig) -> "BandGeometry":
        half = config.band_height / 2
        return cls(center, center - half, center + half, config.band_padding)

    @property
    def lower_limit(self) -> float:
        return self.top + self.padding

    @property
    def upper_limit(self) -> float:
        return self.bottom - self.padding

    def clamp(self, y: float) -> float:
        return max(self.lower_limit, min(self.upper_limit, y))

    def contains(self, y: float) -> bool:
        return self.lower_limit <= y <= self.upper_limit


def default_band_centers(workstream_ids: Iterable[int], config: LayoutConfig) -> Dict[int, float]:
    """
    Evenly spaced band centers.

    Workstreams are placed as points with one step of outer padding over
    ``[band_inset, content_height - band_inset]``.
    """
    ids = list(workstream_ids)
    if not ids:
        return {}
    start = config.band_inset
    stop = config.content_height - config.band_inset
    step = (stop - start) / (len(ids) + 1)
    return {ws_id: start + step * (index + 1) for index, ws_id in enumerate(ids)}


def group_spacing(count: int, config: LayoutConfig) -> float:
    """Vertical gap between placements sharing a deadline and lane."""
    return min(config.band_height / (count + 1), config.node_radius * 1.5)


@dataclass
class LayoutResult:
    """Result of a layout pass."""

    placements: List[Placement] = field(default_factory=list)
    markers: List[date] = field(default_factory=list)
    band_centers: Dict[int, float] = field(default_factory=dict)
    coordinates: Dict[str, Coordinate] = field(default_factory=dict)
    user_placed: Set[str] = field(default_factory=set)
    skipped: List[str] = field(default_factory=list)


class LayoutEngine:
    """
    Owns the coordinate arena and fills it from placements.

    Band geometry is always read live from the arena, so a band that is being
    dragged reports its current position to anyone asking mid-drag.
    """

    def __init__(
        self,
        config: Optional[LayoutConfig] = None,
        arena: Optional[CoordinateArena] = None,
        trace: Optional["InteractionTrace"] = None,
    ):
        self.config = config or LayoutConfig()
        self.arena = arena if arena is not None else CoordinateArena()
        self.trace = trace
        self._default_centers: Dict[int, float] = {}

    def band_center(self, workstream_id: int) -> float:
        live = self.arena.get_band(workstream_id)
        if live is not None:
            return live
        return self._default_centers.get(workstream_id, self.config.band_inset)

    def band_geometry(self, workstream_id: int) -> BandGeometry:
        return BandGeometry.around(self.band_center(workstream_id), self.config)

    def layout(
        self,
        plan: FlatPlan,
        placements: List[Placement],
        timeline: TimelineIndex,
        milestone_positions: Optional[Mapping[str, float]] = None,
        workstream_positions: Optional[Mapping[int, float]] = None,
    ) -> LayoutResult:
        """
        Compute coordinates for all placements.

        Args:
            plan: Flattened plan (for the workstream order).
            placements: Output of the placement synthesizer.
            timeline: Timeline markers and scale.
            milestone_positions: Stored absolute y per placement id.
            workstream_positions: Stored absolute band center per workstream.

        Returns:
            LayoutResult; the same coordinates are written to the arena.
        """
        milestone_positions = milestone_positions or {}
        workstream_positions = workstream_positions or {}
        config = self.config

        self.arena.clear()
        self._default_centers = default_band_centers(
            [ws.id for ws in plan.workstreams], config
        )

        result = LayoutResult(placements=list(placements), markers=timeline.markers)
        for ws_id, default_center in self._default_centers.items():
            center = workstream_positions.get(ws_id, default_center)
            self.arena.set_band(ws_id, center)
            result.band_centers[ws_id] = center

        for (deadline_key, ws_id), group in self._group(placements).items():
            if ws_id not in result.band_centers:
                logger.warning(
                    "Skipping %d placement(s) in unknown workstream %s", len(group), ws_id
                )
                result.skipped.extend(p.id for p in group)
                continue

            deadline = deadline_key if isinstance(deadline_key, date) else None
            x = timeline.x_for(deadline, config.undated_x)
            geometry = BandGeometry.around(result.band_centers[ws_id], config)

            for placement, y, user_placed in self._group_rows(
                group, geometry.center, milestone_positions
            ):
                y = geometry.clamp(y)
                result.coordinates[placement.id] = self.arena.set(placement.id, x, y)
                if user_placed:
                    result.user_placed.add(placement.id)

        if self.trace is not None:
            self.trace.add_stage(
                "layout",
                {
                    "placements": len(result.coordinates),
                    "bands": len(result.band_centers),
                    "user_placed": len(result.user_placed),
                    "skipped": len(result.skipped),
                },
            )
        return result

    def _group(self, placements: List[Placement]) -> "OrderedDict[GroupKey, List[Placement]]":
        groups: "OrderedDict[GroupKey, List[Placement]]" = OrderedDict()
        for placement in placements:
            deadline = placement.milestone.deadline
            key = (deadline if deadline is not None else "undated", placement.placement_workstream_id)
            groups.setdefault(key, []).append(placement)
        return groups

    def _group_rows(
        self,
        group: List[Placement],
        center: float,
        milestone_positions: Mapping[str, float],
    ) -> List[Tuple[Placement, float, bool]]:
        """(placement, y, user_placed) for each member of a deadline/lane group."""
        if len(group) == 1:
            placement = group[0]
            stored = milestone_positions.get(placement.id)
            if stored is None:
                return [(placement, center, False)]
            return [(placement, stored, True)]

        spacing = group_spacing(len(group), self.config)
        start = center - (len(group) - 1) * spacing / 2
        rows = []
        for index, placement in enumerate(group):
            computed = start + index * spacing
            stored = milestone_positions.get(placement.id)
            # A stored value far from its slot was moved by hand
            if stored is not None and abs(stored - computed) > spacing / 2:
                rows.append((placement, stored, True))
            else:
                rows.append((placement, computed, False))
        return rows

    def enforce_containment(
        self, workstream_id: int, placements: Iterable[Placement]
    ) -> Dict[str, float]:
        """
        Clamp out-of-band placements of one workstream back inside its band.

        Args:
            workstream_id: Workstream whose band was moved.
            placements: All placements; only those drawn in the workstream are
                considered.

        Returns:
            Corrected y per placement id; empty when nothing was out of bounds.
        """
        geometry = self.band_geometry(workstream_id)
        members = [
            p
            for p in placements
            if p.placement_workstream_id == workstream_id and p.id in self.arena
        ]
        out_of_bounds = [p for p in members if not geometry.contains(self.arena.get(p.id).y)]
        if not out_of_bounds:
            return {}

        corrected: Dict[str, float] = {}
        for placement in out_of_bounds:
            y = geometry.clamp(self.arena.get(placement.id).y)
            self.arena.update(placement.id, y=y)
            corrected[placement.id] = y

        if self.trace is not None:
            self.trace.add_stage(
                "containment", {"workstream": workstream_id, "corrected": sorted(corrected)}
            )
        return corrected
