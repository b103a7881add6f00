"""
Placement synthesis.

Every milestone gets one original placement in its own workstream. Where a
dependency or an activity crosses workstream boundaries, a duplicate
placement of the relevant milestone is added to the other lane so that the
relationship can be drawn as a short same-lane connection.
"""

import logging
from typing import TYPE_CHECKING, List, Optional, Set

from .models import (
    DuplicateCause,
    DuplicatePlacement,
    FlatPlan,
    OriginalPlacement,
    Placement,
    activity_duplicate_key,
    dependency_duplicate_key,
)

if TYPE_CHECKING:
    from .tracer import InteractionTrace

logger = logging.getLogger(__name__)


class PlacementSynthesizer:
    """
    Expands milestones into placements.

    The output is deterministic for a given plan: originals in milestone
    order, then dependency duplicates in dependency order, then activity
    duplicates in activity order. Duplicates are deduplicated by key, so
    repeated edges in the input never yield duplicate placements.
    """

    def __init__(self, trace: Optional["InteractionTrace"] = None):
        self.trace = trace

    def synthesize(self, plan: FlatPlan) -> List[Placement]:
        """
        Build the placement list for a plan.

        Args:
            plan: Flattened plan.

        Returns:
            List of OriginalPlacement and DuplicatePlacement records.
        """
        milestones = plan.milestone_index()
        placements: List[Placement] = [OriginalPlacement(m) for m in plan.milestones]
        seen: Set[str] = {p.id for p in placements}
        skipped = 0

        for dep in plan.dependencies:
            source = milestones.get(dep.source)
            target = milestones.get(dep.target)
            if source is None or target is None:
                logger.warning(
                    "Skipping dependency %s -> %s: milestone not found", dep.source, dep.target
                )
                skipped += 1
                continue
            if source.workstream_id == target.workstream_id:
                continue

            # The source is mirrored into the lane of the milestone it feeds
            self._add(
                placements,
                seen,
                DuplicatePlacement(
                    milestone=source,
                    placement_workstream_id=target.workstream_id,
                    duplicate_key=dependency_duplicate_key(source.id, target.id),
                    cause=DuplicateCause.DEPENDENCY,
                ),
            )

        for activity in plan.activities:
            for target_id in activity.cross_lane_candidates:
                target = milestones.get(target_id)
                if target is None:
                    logger.warning(
                        "Skipping activity %s target %s: milestone not found",
                        activity.id,
                        target_id,
                    )
                    skipped += 1
                    continue
                if target.workstream_id == activity.workstream_id:
                    continue

                self._add(
                    placements,
                    seen,
                    DuplicatePlacement(
                        milestone=target,
                        placement_workstream_id=activity.workstream_id,
                        duplicate_key=activity_duplicate_key(target.id, activity.id),
                        cause=DuplicateCause.ACTIVITY,
                        activity_id=activity.id,
                    ),
                )

        if self.trace is not None:
            self.trace.add_stage(
                "synthesis",
                {
                    "originals": len(plan.milestones),
                    "duplicates": len(placements) - len(plan.milestones),
                    "skipped_edges": skipped,
                },
            )
        return placements

    @staticmethod
    def _add(placements: List[Placement], seen: Set[str], placement: DuplicatePlacement) -> None:
        if placement.id in seen:
            return
        seen.add(placement.id)
        placements.append(placement)
