"""
Data models for the flightmap diagram engine.

This module contains the business records produced by flattening a plan
(workstreams, milestones, activities, dependencies), the placement records
synthesized from them, the coordinate record stored in the layout arena and
the wire models exchanged with the position backend.

Classes:
    Workstream: A lane owning an ordered list of milestones.
    Milestone: A dated checkpoint owned by one workstream.
    Activity: Work flowing out of a source milestone.
    Dependency: Directed source -> target milestone edge.
    FlatPlan: The flattened plan consumed by the layout pipeline.
    OriginalPlacement / DuplicatePlacement: The two placement variants.
    Coordinate: An (x, y) pixel pair.
    RemoteNodePosition / PositionUpsert: Position backend wire records.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel


class MilestoneStatus(str, Enum):
    """Progress state of a milestone."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: Optional[str]) -> "MilestoneStatus":
        """Normalize a raw status string, defaulting to NOT_STARTED."""
        if not value:
            return cls.NOT_STARTED
        normalized = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            return cls.NOT_STARTED


class NodeType(str, Enum):
    """Kinds of node whose vertical position is persisted."""

    MILESTONE = "milestone"
    WORKSTREAM = "workstream"


class DuplicateCause(str, Enum):
    """Why a duplicate placement was synthesized."""

    DEPENDENCY = "dependency"
    ACTIVITY = "activity"


@dataclass
class Workstream:
    """A horizontal lane of the diagram."""

    id: int
    name: str
    color: str = "#0000FF"
    milestone_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class Milestone:
    """
    A checkpoint on the timeline.

    Attributes:
        id: Numeric milestone id.
        name: Display name.
        workstream_id: Id of the owning workstream.
        deadline: Deadline date, or None when the milestone is undated.
        status: Progress state.
    """

    id: int
    name: str
    workstream_id: int
    deadline: Optional[date] = None
    status: MilestoneStatus = MilestoneStatus.NOT_STARTED


@dataclass
class Activity:
    """
    Work that starts at a source milestone.

    ``target_milestone_ids`` are same-lane targets. ``supported_milestone_ids``
    and ``additional_milestone_ids`` may point into other workstreams; those
    cross-lane targets are drawn against duplicate placements.
    """

    id: int
    name: str
    source_milestone_id: int
    workstream_id: int
    target_milestone_ids: List[int] = field(default_factory=list)
    supported_milestone_ids: List[int] = field(default_factory=list)
    additional_milestone_ids: List[int] = field(default_factory=list)
    auto_connect: bool = False

    @property
    def cross_lane_candidates(self) -> List[int]:
        """Supported then additional milestone ids, in input order."""
        return list(self.supported_milestone_ids) + list(self.additional_milestone_ids)


@dataclass(frozen=True)
class Dependency:
    """Directed edge: ``source`` blocks or feeds ``target``."""

    source: int
    target: int


@dataclass
class FlatPlan:
    """Flat lists extracted from the hierarchical plan."""

    container_id: Optional[int] = None
    workstreams: List[Workstream] = field(default_factory=list)
    milestones: List[Milestone] = field(default_factory=list)
    activities: List[Activity] = field(default_factory=list)
    dependencies: List[Dependency] = field(default_factory=list)

    def milestone_index(self) -> Dict[int, Milestone]:
        return {milestone.id: milestone for milestone in self.milestones}

    def workstream_index(self) -> Dict[int, Workstream]:
        return {workstream.id: workstream for workstream in self.workstreams}


def dependency_duplicate_key(source_id: int, target_id: int) -> str:
    """Stable key of the duplicate drawn for a cross-lane dependency."""
    return f"duplicate-{source_id}-{target_id}"


def activity_duplicate_key(target_id: int, activity_id: int) -> str:
    """Stable key of the duplicate drawn for a cross-lane activity target."""
    return f"activity-duplicate-{target_id}-{activity_id}"


@dataclass(frozen=True)
class OriginalPlacement:
    """The one placement of a milestone inside its own workstream."""

    milestone: Milestone
    kind: str = field(default="original", init=False)

    @property
    def id(self) -> str:
        return str(self.milestone.id)

    @property
    def placement_workstream_id(self) -> int:
        return self.milestone.workstream_id

    @property
    def is_duplicate(self) -> bool:
        return False

    @property
    def persistence_key(self) -> int:
        """Node id used when the position is written to the backend."""
        return self.milestone.id


@dataclass(frozen=True)
class DuplicatePlacement:
    """
    A synthetic copy of a milestone drawn in another workstream's lane.

    Attributes:
        milestone: The referenced (original) milestone.
        placement_workstream_id: Lane the duplicate is drawn in.
        duplicate_key: Stable identity, also the persistence key.
        cause: Whether a dependency or an activity produced it.
        activity_id: Producing activity, for activity duplicates.
    """

    milestone: Milestone
    placement_workstream_id: int
    duplicate_key: str
    cause: DuplicateCause
    activity_id: Optional[int] = None
    kind: str = field(default="duplicate", init=False)

    @property
    def id(self) -> str:
        return self.duplicate_key

    @property
    def original_milestone_id(self) -> int:
        return self.milestone.id

    @property
    def is_duplicate(self) -> bool:
        return True

    @property
    def persistence_key(self) -> str:
        return self.duplicate_key


Placement = Union[OriginalPlacement, DuplicatePlacement]
"""A single visual instance of a milestone in one workstream lane."""


@dataclass(frozen=True)
class Coordinate:
    """Pixel position of a placement or a workstream band center."""

    x: float
    y: float


class RemoteNodePosition(BaseModel):
    """A stored position as returned by the position backend."""

    node_type: NodeType
    node_id: Union[int, str]
    rel_y: float
    is_duplicate: bool = False
    duplicate_key: Optional[str] = None
    original_node_id: Optional[int] = None

    def state_key(self) -> str:
        """
        Key of this record in the in-memory position map.

        Duplicate milestones are keyed by their duplicate key, everything else
        by the string form of the numeric node id.
        """
        if self.is_duplicate and self.duplicate_key:
            return self.duplicate_key
        return str(self.node_id)


class PositionUpsert(BaseModel):
    """Body of a position write."""

    container: Optional[int]
    node_type: NodeType
    node_id: Union[int, str]
    rel_y: float
    is_duplicate: bool = False
    duplicate_key: str = ""
    original_node_id: Optional[int] = None

    @property
    def debounce_key(self) -> str:
        return f"position:{self.node_type.value}:{self.node_id}"
