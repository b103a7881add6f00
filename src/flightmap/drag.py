"""
Pointer-driven drag handling.

Two drags exist: moving a milestone placement (free y inside its lane, x
snapped to a timeline marker on drop) and moving a whole workstream lane
(every placement drawn in the lane follows). Only one drag is active at a
time; pointer handlers are synchronous and touch only the arena, the
connections incident to what moved and the renderer. Network work is spawned
on the scheduler and never awaited here.

Classes:
    DragState: Idle / dragging milestone / dragging workstream
    MilestoneDrop: Outcome of dropping a milestone
    WorkstreamDrop: Outcome of dropping a workstream lane
    DragController: The state machine
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional

from .config import LayoutConfig
from .connections import ConnectionIndexer
from .errors import DragStateError
from .layout import LayoutEngine, workstream_key
from .models import Coordinate, Placement
from .positions import PositionStore
from .renderer import DiagramRenderer, NullRenderer
from .scheduler import Scheduler
from .timeline import TimelineIndex

if TYPE_CHECKING:
    from .tracer import InteractionTrace

logger = logging.getLogger(__name__)

DeadlineCallback = Callable[[str, date], Awaitable[bool]]

SETTLE_KEY_PREFIX = "settle:"


class DragState(Enum):
    IDLE = "idle"
    DRAGGING_MILESTONE = "dragging_milestone"
    DRAGGING_WORKSTREAM = "dragging_workstream"


@dataclass
class MilestoneDrop:
    """
    Result of ending a milestone drag.

    Attributes:
        placement_id: Placement that was dropped.
        coordinate: Committed coordinate (x snapped to ``deadline``).
        deadline: Marker the placement snapped to.
        deadline_changed: True when an original milestone landed on a new
            marker and the deadline callback was invoked.
        confirmation: Task resolving to the callback's acknowledgement; the
            x rollback has already happened when it resolves False.
    """

    placement_id: str
    coordinate: Coordinate
    deadline: date
    deadline_changed: bool = False
    confirmation: Optional["asyncio.Future[bool]"] = None


@dataclass
class WorkstreamDrop:
    """
    Result of ending a workstream drag.

    Attributes:
        workstream_id: Lane that was dropped.
        center: Committed band center.
        members: New y of every placement drawn in the lane.
    """

    workstream_id: int
    center: float
    members: Dict[str, float] = field(default_factory=dict)


class DragController:
    """
    State machine for milestone and workstream drags.

    Args:
        config: Layout constants.
        engine: Layout engine owning the coordinate arena.
        timeline: Markers and scale used for snapping.
        placements: Current placements.
        indexer: Connection lookup for incremental redraws.
        store: Position persistence.
        scheduler: Scheduler for deferred and background work.
        renderer: Receives visual updates.
        on_deadline_change: ``async (milestone_id, new_deadline) -> bool``.
            A False result or an exception is treated as a rejection.
        trace: Optional interaction trace.
    """

    def __init__(
        self,
        config: LayoutConfig,
        engine: LayoutEngine,
        timeline: TimelineIndex,
        placements: List[Placement],
        indexer: ConnectionIndexer,
        store: PositionStore,
        scheduler: Scheduler,
        renderer: Optional[DiagramRenderer] = None,
        on_deadline_change: Optional[DeadlineCallback] = None,
        trace: Optional["InteractionTrace"] = None,
    ):
        self.config = config
        self.engine = engine
        self.timeline = timeline
        self.indexer = indexer
        self.store = store
        self.scheduler = scheduler
        self.renderer = renderer if renderer is not None else NullRenderer()
        self.on_deadline_change = on_deadline_change
        self.trace = trace

        self._placements: Dict[str, Placement] = {p.id: p for p in placements}
        self.state = DragState.IDLE
        self._target: Optional[str] = None
        self._workstream_id: Optional[int] = None
        self._pointer_origin = Coordinate(0.0, 0.0)
        self._node_origin = Coordinate(0.0, 0.0)
        self._member_origins: Dict[str, float] = {}

    @property
    def arena(self):
        return self.engine.arena

    @property
    def active_target(self) -> Optional[str]:
        """Placement id or workstream key being dragged, if any."""
        return self._target

    def placement(self, placement_id: str) -> Optional[Placement]:
        return self._placements.get(placement_id)

    def members(self, workstream_id: int) -> List[Placement]:
        """Placements drawn in a workstream lane, originals and duplicates."""
        return [
            p for p in self._placements.values() if p.placement_workstream_id == workstream_id
        ]

    # -- milestone drags ------------------------------------------------------

    def start_milestone_drag(self, placement_id: str, pointer_x: float, pointer_y: float) -> bool:
        """
        Begin dragging a placement.

        Returns:
            False if the placement is unknown or has no coordinate.

        Raises:
            DragStateError: If a drag is already active.
        """
        self._require_idle()
        placement = self._placements.get(placement_id)
        coordinate = self.arena.get(placement_id)
        if placement is None or coordinate is None:
            logger.warning("Cannot drag unknown placement %s", placement_id)
            return False

        self.state = DragState.DRAGGING_MILESTONE
        self._target = placement_id
        self._pointer_origin = Coordinate(pointer_x, pointer_y)
        self._node_origin = coordinate
        self.renderer.set_dragging(placement_id, True)
        self._event("drag_start", placement_id, x=coordinate.x, y=coordinate.y)
        return True

    def _milestone_candidate(self, pointer_x: float, pointer_y: float) -> Coordinate:
        placement = self._placements[self._target]
        dx = pointer_x - self._pointer_origin.x
        dy = pointer_y - self._pointer_origin.y
        # Read the band live; it may be mid-move
        geometry = self.engine.band_geometry(placement.placement_workstream_id)
        return Coordinate(self._node_origin.x + dx, geometry.clamp(self._node_origin.y + dy))

    def _move_milestone(self, pointer_x: float, pointer_y: float) -> None:
        candidate = self._milestone_candidate(pointer_x, pointer_y)
        current = self.arena.get(self._target)
        if (
            current is not None
            and abs(current.x - candidate.x) < self.config.move_epsilon
            and abs(current.y - candidate.y) < self.config.move_epsilon
        ):
            return
        coordinate = self.arena.set(self._target, candidate.x, candidate.y)
        self.renderer.move_node(self._target, coordinate)
        self.renderer.update_connections(self.indexer.paths_for(self._target))
        logger.debug("Drag %s to (%.1f, %.1f)", self._target, coordinate.x, coordinate.y)
        self._event("drag_move", self._target, x=coordinate.x, y=coordinate.y)

    def _end_milestone(self, pointer_x: float, pointer_y: float) -> MilestoneDrop:
        placement_id = self._target
        placement = self._placements[placement_id]
        origin = self._node_origin
        candidate = self._milestone_candidate(pointer_x, pointer_y)

        marker, snapped_x = self.timeline.snap(candidate.x)
        coordinate = self.arena.set(placement_id, snapped_x, candidate.y)
        self._snap_node(placement_id, coordinate)
        self.renderer.update_connections(self.indexer.paths_for(placement_id))
        self.store.set_milestone_position(placement, coordinate.y)

        drop = MilestoneDrop(placement_id, coordinate, marker)
        original_deadline = placement.milestone.deadline
        if not placement.is_duplicate and marker != original_deadline:
            drop.deadline_changed = True
            drop.confirmation = self.scheduler.spawn(
                self._confirm_deadline(placement, marker, origin.x)
            )

        self._event(
            "drag_end",
            placement_id,
            x=coordinate.x,
            y=coordinate.y,
            deadline=marker.isoformat(),
            deadline_changed=drop.deadline_changed,
        )
        return drop

    async def _confirm_deadline(self, placement: Placement, new_deadline: date, origin_x: float) -> bool:
        milestone = placement.milestone
        accepted = True
        if self.on_deadline_change is not None:
            try:
                accepted = bool(await self.on_deadline_change(str(milestone.id), new_deadline))
            except Exception as exc:
                logger.warning("Deadline change for milestone %s raised: %s", milestone.id, exc)
                accepted = False

        if accepted:
            return True

        # Only x goes back; the position write for y stands
        if milestone.deadline is not None:
            rollback_x = self.timeline.marker_x(milestone.deadline)
        else:
            rollback_x = origin_x
        coordinate = self.arena.update(placement.id, x=rollback_x)
        if coordinate is not None:
            self._snap_node(placement.id, coordinate)
            self.renderer.update_connections(self.indexer.paths_for(placement.id))
        logger.info(
            "Deadline change for milestone %s to %s rejected; x rolled back",
            milestone.id,
            new_deadline,
        )
        self._event("rollback", placement.id, x=rollback_x, rejected=new_deadline.isoformat())
        return False

    # -- workstream drags -----------------------------------------------------

    def start_workstream_drag(self, workstream_id: int, pointer_y: float) -> bool:
        """
        Begin dragging a workstream lane.

        Returns:
            False if the workstream has no band in the arena.

        Raises:
            DragStateError: If a drag is already active.
        """
        self._require_idle()
        center = self.arena.get_band(workstream_id)
        if center is None:
            logger.warning("Cannot drag unknown workstream %s", workstream_id)
            return False

        self.state = DragState.DRAGGING_WORKSTREAM
        self._workstream_id = workstream_id
        self._target = workstream_key(workstream_id)
        self._pointer_origin = Coordinate(0.0, pointer_y)
        self._node_origin = Coordinate(0.0, center)
        self._member_origins = {
            p.id: self.arena.get(p.id).y for p in self.members(workstream_id) if p.id in self.arena
        }
        self.renderer.set_dragging(self._target, True)
        self._event("drag_start", self._target, y=center)
        return True

    def _shift_workstream(self, dy: float) -> Dict[str, float]:
        ws_id = self._workstream_id
        self.arena.set_band(ws_id, self._node_origin.y + dy)
        self.renderer.move_band(ws_id, self.engine.band_geometry(ws_id))

        moved: Dict[str, float] = {}
        for placement_id, origin_y in self._member_origins.items():
            coordinate = self.arena.update(placement_id, y=origin_y + dy)
            if coordinate is None:
                continue
            moved[placement_id] = coordinate.y
            self.renderer.move_node(placement_id, coordinate)
        return moved

    def _move_workstream(self, pointer_y: float) -> None:
        dy = pointer_y - self._pointer_origin.y
        current = self.arena.get_band(self._workstream_id)
        if current is not None and abs(current - (self._node_origin.y + dy)) < self.config.move_epsilon:
            return
        self._shift_workstream(dy)
        self.renderer.update_connections(
            self.indexer.resolve(self.indexer.connections_for_workstream(self._workstream_id))
        )
        logger.debug("Drag workstream %s by %.1f", self._workstream_id, dy)
        self._event("drag_move", self._target, dy=dy)

    def _end_workstream(self, pointer_y: float) -> WorkstreamDrop:
        ws_id = self._workstream_id
        requested = self._node_origin.y + (pointer_y - self._pointer_origin.y)
        center = max(self.config.min_band_center, requested)
        moved = self._shift_workstream(center - self._node_origin.y)

        self.store.set_workstream_position(ws_id, center)
        self.store.record_milestone_positions(moved)
        self.scheduler.call_soon(SETTLE_KEY_PREFIX + str(ws_id), lambda: self.settle_workstream(ws_id))

        self._event("drag_end", self._target, y=center, members=len(moved))
        return WorkstreamDrop(ws_id, center, moved)

    def settle_workstream(self, workstream_id: int) -> Dict[str, float]:
        """
        Clamp a lane's placements back inside its band and redraw its connections.

        Runs one frame after a workstream drop.

        Returns:
            Corrected y per placement id.
        """
        corrected = self.engine.enforce_containment(workstream_id, self._placements.values())
        if corrected:
            self.store.record_milestone_positions(corrected)
            for placement_id in corrected:
                self._snap_node(placement_id, self.arena.get(placement_id))
            logger.info(
                "Moved %d placement(s) back inside workstream %s", len(corrected), workstream_id
            )
        self.renderer.redraw_all_connections(
            self.indexer.resolve(self.indexer.connections_touching_workstream(workstream_id))
        )
        return corrected

    # -- dispatch -------------------------------------------------------------

    def move(self, pointer_x: float, pointer_y: float) -> None:
        """Pointer moved during a drag."""
        if self.state is DragState.DRAGGING_MILESTONE:
            self._move_milestone(pointer_x, pointer_y)
        elif self.state is DragState.DRAGGING_WORKSTREAM:
            self._move_workstream(pointer_y)
        else:
            raise DragStateError("move without an active drag")

    def end(self, pointer_x: float, pointer_y: float):
        """
        Pointer released.

        Returns:
            MilestoneDrop or WorkstreamDrop.

        Raises:
            DragStateError: If no drag is active.
        """
        if self.state is DragState.IDLE:
            raise DragStateError("end without an active drag")
        target = self._target
        try:
            if self.state is DragState.DRAGGING_MILESTONE:
                return self._end_milestone(pointer_x, pointer_y)
            return self._end_workstream(pointer_y)
        finally:
            self.renderer.set_dragging(target, False)
            self._reset()

    def cancel(self) -> None:
        """Abandon the active drag, restoring pre-drag coordinates."""
        if self.state is DragState.DRAGGING_MILESTONE:
            self.arena.set(self._target, self._node_origin.x, self._node_origin.y)
            self._snap_node(self._target, self._node_origin)
            self.renderer.update_connections(self.indexer.paths_for(self._target))
        elif self.state is DragState.DRAGGING_WORKSTREAM:
            self._shift_workstream(0.0)
            self.renderer.update_connections(
                self.indexer.resolve(self.indexer.connections_for_workstream(self._workstream_id))
            )
        else:
            return
        self.renderer.set_dragging(self._target, False)
        self._reset()

    def _snap_node(self, placement_id: str, coordinate: Coordinate) -> None:
        self.renderer.move_node(
            placement_id, coordinate, duration_ms=self.config.snap_animation_ms
        )

    def _require_idle(self) -> None:
        if self.state is not DragState.IDLE:
            raise DragStateError(f"a drag of {self._target} is already active")

    def _reset(self) -> None:
        self.state = DragState.IDLE
        self._target = None
        self._workstream_id = None
        self._member_origins = {}

    def _event(self, kind: str, target: str, **data) -> None:
        if self.trace is not None:
            self.trace.add_event(kind, target, **data)
