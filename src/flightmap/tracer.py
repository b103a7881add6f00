"""
Debug tracing for flightmap diagrams.

When a diagram is built with ``debug=True`` the pipeline records a stage for
each recompute step and an event for every interaction, so a misplaced node
can be traced back to the decision that put it there.

Usage:
    >>> diagram = FlightmapDiagram(plan, debug=True)
    >>> diagram.recompute()
    >>> trace = diagram.get_trace()
    >>> print(trace.summary())
    >>> trace.dump_to_file("flightmap_trace.txt")

The trace captures:
- Pipeline stages (synthesis, timeline, layout, containment)
- Interaction events (drag_start, drag_move, drag_end, rollback, upsert)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PipelineStage:
    """
    Snapshot of state at a pipeline stage.

    Attributes:
        name: Name of this pipeline stage
        data: Dictionary of relevant data at this stage
    """

    name: str
    data: Dict[str, Any]

    def __str__(self) -> str:
        lines = [f"=== Stage: {self.name} ==="]
        for key, value in self.data.items():
            str_val = str(value)
            if len(str_val) > 100:
                str_val = str_val[:100] + "..."
            lines.append(f"  {key}: {str_val}")
        return "\n".join(lines)


@dataclass
class TraceEvent:
    """
    One interaction event.

    Attributes:
        kind: Event kind (e.g. "drag_move", "rollback")
        target: Placement id or workstream key the event concerns
        data: Event details
    """

    kind: str
    target: str
    data: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        details = ", ".join(f"{k}={v}" for k, v in self.data.items())
        return f"[{self.kind}] {self.target}" + (f" ({details})" if details else "")


@dataclass
class InteractionTrace:
    """
    Trace of recompute stages and interaction events for one diagram.

    Attributes:
        stages: Pipeline stages in the order they ran
        events: Interaction events in the order they happened
        container_id: Diagram container the trace belongs to
    """

    stages: List[PipelineStage] = field(default_factory=list)
    events: List[TraceEvent] = field(default_factory=list)
    container_id: Optional[int] = None

    def add_stage(self, name: str, data: Dict[str, Any]) -> None:
        """
        Add a pipeline stage snapshot.

        Args:
            name: Name of the stage (e.g., "layout")
            data: Dictionary of relevant data at this stage
        """
        self.stages.append(PipelineStage(name, dict(data)))

    def add_event(self, kind: str, target: str, **data: Any) -> None:
        self.events.append(TraceEvent(kind, str(target), data))

    def get_stage(self, name: str) -> Optional[PipelineStage]:
        """Get the latest pipeline stage with the given name."""
        for stage in reversed(self.stages):
            if stage.name == name:
                return stage
        return None

    def get_events(self, kind: Optional[str] = None, target: Optional[str] = None) -> List[TraceEvent]:
        """Events filtered by kind and/or target."""
        return [
            e
            for e in self.events
            if (kind is None or e.kind == kind) and (target is None or e.target == target)
        ]

    def clear(self) -> None:
        self.stages.clear()
        self.events.clear()

    def summary(self) -> str:
        """
        Generate a human-readable summary of the trace.

        Returns a string with the stage overview and event counts by kind.
        """
        lines = [
            "=" * 60,
            "INTERACTION TRACE SUMMARY",
            "=" * 60,
            "",
            f"Container: {self.container_id}",
            "",
            f"Pipeline stages: {len(self.stages)}",
        ]
        for stage in self.stages:
            lines.append(f"  - {stage.name}")

        lines.extend(["", f"Total events: {len(self.events)}", ""])

        kind_counts: Dict[str, int] = {}
        for event in self.events:
            kind_counts[event.kind] = kind_counts.get(event.kind, 0) + 1

        lines.append("Events by kind:")
        for kind, count in sorted(kind_counts.items(), key=lambda x: -x[1]):
            lines.append(f"  {kind}: {count}")

        return "\n".join(lines)

    def dump(self) -> str:
        """Complete dump of every stage and event."""
        lines = [self.summary(), "", "=" * 60, "DETAILED TRACE", "=" * 60, ""]

        lines.append("PIPELINE STAGES:")
        lines.append("-" * 40)
        for stage in self.stages:
            lines.append(str(stage))
            lines.append("")

        lines.append("EVENTS:")
        lines.append("-" * 40)
        for event in self.events:
            lines.append(str(event))

        return "\n".join(lines)

    def dump_to_file(self, filename: str) -> None:
        """Write the complete trace dump to a file."""
        with open(filename, "w", encoding="utf-8") as f:
            f.write(self.dump())
