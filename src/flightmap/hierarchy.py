"""
Hierarchy flattening for flightmap plans.

Converts the nested plan object (strategy -> programs -> workstreams ->
milestones -> activities) into the flat lists consumed by the layout
pipeline. The plan is treated as read-only.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .errors import PlanError
from .models import (
    Activity,
    Dependency,
    FlatPlan,
    Milestone,
    MilestoneStatus,
    Workstream,
)

logger = logging.getLogger(__name__)

DEFAULT_WORKSTREAM_COLOR = "#0000FF"

# Keys walked to reach workstreams, outermost first
_CONTAINER_KEYS = ("strategies", "programs")


def parse_deadline(value: Any) -> Optional[date]:
    """
    Parse a deadline into a date.

    Accepts ``date``/``datetime`` objects and ISO strings (``YYYY-MM-DD`` or a
    full ISO timestamp). Empty values return None; malformed values are
    logged and return None so the milestone is laid out as undated.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.warning("Ignoring malformed deadline %r", value)
        return None


class HierarchyFlattener:
    """Flattens a hierarchical plan into a FlatPlan."""

    def flatten(self, data: Mapping[str, Any]) -> FlatPlan:
        """
        Flatten a plan.

        Args:
            data: Plan mapping. Workstreams may sit at the top level or under
                ``strategies``/``programs``. Each milestone may list
                ``dependencies`` (ids of milestones it depends on) and
                ``activities``; a top-level ``dependencies`` list of
                ``{"source", "target"}`` pairs is also accepted.

        Returns:
            FlatPlan with workstreams, milestones, activities and dependencies
            in input order.

        Raises:
            PlanError: If the plan or one of its nodes is not a mapping, or a
                node lacks a usable id.
        """
        if not isinstance(data, Mapping):
            raise PlanError("Plan must be a mapping")

        container_id = data.get("id")
        plan = FlatPlan(
            container_id=_coerce_id(container_id, "plan") if container_id is not None else None
        )
        milestone_ids = set()
        raw_activities: List[Dict[str, Any]] = []

        for ws_data in self._walk_workstreams(data):
            workstream = Workstream(
                id=_require_id(ws_data, "workstream"),
                name=str(ws_data.get("name") or ""),
                color=ws_data.get("color") or DEFAULT_WORKSTREAM_COLOR,
            )
            plan.workstreams.append(workstream)

            for ms_data in _mapping_list(ws_data.get("milestones"), "milestone"):
                milestone = Milestone(
                    id=_require_id(ms_data, "milestone"),
                    name=str(ms_data.get("name") or ""),
                    workstream_id=workstream.id,
                    deadline=parse_deadline(ms_data.get("deadline")),
                    status=MilestoneStatus.parse(ms_data.get("status")),
                )
                if milestone.id in milestone_ids:
                    logger.warning(
                        "Milestone %s listed more than once; keeping the first", milestone.id
                    )
                    continue
                milestone_ids.add(milestone.id)
                plan.milestones.append(milestone)
                workstream.milestone_ids.append(milestone.id)

                for dep_id in ms_data.get("dependencies") or []:
                    plan.dependencies.append(
                        Dependency(source=_coerce_id(dep_id, "dependency"), target=milestone.id)
                    )
                for act_data in _mapping_list(ms_data.get("activities"), "activity"):
                    raw_activities.append(
                        {"data": act_data, "milestone": milestone.id, "workstream": workstream.id}
                    )

            for act_data in _mapping_list(ws_data.get("activities"), "activity"):
                raw_activities.append({"data": act_data, "milestone": None, "workstream": workstream.id})

        for edge in _mapping_list(data.get("dependencies"), "dependency"):
            if "source" not in edge or "target" not in edge:
                raise PlanError("Dependency entries need 'source' and 'target'")
            plan.dependencies.append(
                Dependency(
                    source=_coerce_id(edge["source"], "dependency"),
                    target=_coerce_id(edge["target"], "dependency"),
                )
            )

        plan.activities = self._build_activities(raw_activities, plan.milestone_index())
        self._auto_connect(plan)
        return plan

    def _walk_workstreams(self, node: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
        for key in _CONTAINER_KEYS:
            for child in _mapping_list(node.get(key), key):
                yield from self._walk_workstreams(child)
        yield from _mapping_list(node.get("workstreams"), "workstream")

    def _build_activities(
        self, raw_activities: List[Dict[str, Any]], milestones: Dict[int, Milestone]
    ) -> List[Activity]:
        activities: List[Activity] = []
        seen = set()

        for entry in raw_activities:
            act_data = entry["data"]
            activity_id = _require_id(act_data, "activity")
            if activity_id in seen:
                continue

            source = act_data.get("source_milestone")
            if source is None:
                source = entry["milestone"]
            if source is None:
                logger.warning("Activity %s has no source milestone; skipping", activity_id)
                continue
            source_id = _coerce_id(source, "activity source")

            # An activity lives in the lane of its source milestone
            source_milestone = milestones.get(source_id)
            if source_milestone is not None:
                workstream_id = source_milestone.workstream_id
            else:
                logger.warning(
                    "Activity %s references missing source milestone %s",
                    activity_id,
                    source_id,
                )
                workstream_id = entry["workstream"]

            targets = _id_list(act_data.get("target_milestones"))
            if act_data.get("target_milestone") is not None:
                targets.insert(0, _coerce_id(act_data["target_milestone"], "activity target"))

            seen.add(activity_id)
            activities.append(
                Activity(
                    id=activity_id,
                    name=str(act_data.get("name") or ""),
                    source_milestone_id=source_id,
                    workstream_id=workstream_id,
                    target_milestone_ids=targets,
                    supported_milestone_ids=_id_list(act_data.get("supported_milestones")),
                    additional_milestone_ids=_id_list(act_data.get("additional_milestones")),
                    auto_connect=bool(act_data.get("auto_connect", False)),
                )
            )

        return activities

    def _auto_connect(self, plan: FlatPlan) -> None:
        """Point auto-connect activities at the next milestone in their lane."""
        milestones = plan.milestone_index()
        lanes: Dict[int, List[Milestone]] = {}
        for workstream in plan.workstreams:
            lane = [milestones[mid] for mid in workstream.milestone_ids]
            lane.sort(key=lambda m: m.deadline or date.min)
            lanes[workstream.id] = lane

        for activity in plan.activities:
            if not activity.auto_connect:
                continue
            lane = lanes.get(activity.workstream_id, [])
            ids = [m.id for m in lane]
            if activity.source_milestone_id not in ids:
                continue
            index = ids.index(activity.source_milestone_id)
            if index < len(ids) - 1:
                activity.target_milestone_ids = [ids[index + 1]]


def flatten_plan(data: Mapping[str, Any]) -> FlatPlan:
    """Convenience wrapper around HierarchyFlattener.flatten."""
    return HierarchyFlattener().flatten(data)


def _mapping_list(value: Any, kind: str) -> List[Mapping[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise PlanError(f"Expected a list of {kind} entries, got {type(value).__name__}")
    for item in value:
        if not isinstance(item, Mapping):
            raise PlanError(f"Each {kind} entry must be a mapping")
    return list(value)


def _require_id(node: Mapping[str, Any], kind: str) -> int:
    if node.get("id") is None:
        raise PlanError(f"{kind.capitalize()} entry is missing an id")
    return _coerce_id(node["id"], kind)


def _coerce_id(value: Any, kind: str) -> int:
    if isinstance(value, bool):
        raise PlanError(f"Invalid {kind} id: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PlanError(f"Invalid {kind} id: {value!r}") from None


def _id_list(value: Any) -> List[int]:
    if not value:
        return []
    return [_coerce_id(item, "milestone reference") for item in value]
