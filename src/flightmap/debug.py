"""
Debug utilities for flightmap.

Key Components:
- TracedRenderer: Renderer wrapper that records every call into an
  InteractionTrace before forwarding it
- describe_layout: Plain-text dump of a layout result, lane by lane

Usage:
    # TracedRenderer is installed by FlightmapDiagram when debug=True
    >>> diagram = FlightmapDiagram(plan, debug=True)
    >>> diagram.recompute()
    >>> print(describe_layout(diagram.result))
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from .connections import ConnectionPath
from .layout import BandGeometry, LayoutResult
from .models import Coordinate
from .renderer import DiagramRenderer, NullRenderer
from .tracer import InteractionTrace


class TracedRenderer:
    """
    Renderer wrapper that logs every call to an InteractionTrace.

    Events are recorded with kind ``render.<method>`` and the node, band or
    ``*`` as target. The wrapped renderer still receives every call.

    Attributes:
        calls: (method, target) pairs in call order
    """

    def __init__(self, renderer: Optional[DiagramRenderer], trace: InteractionTrace):
        """
        Initialize a TracedRenderer.

        Args:
            renderer: The renderer to wrap (a NullRenderer if None)
            trace: The trace to record calls to
        """
        self._renderer = renderer if renderer is not None else NullRenderer()
        self._trace = trace
        self.calls: List[Tuple[str, str]] = []

    @property
    def wrapped(self) -> DiagramRenderer:
        return self._renderer

    def _record(self, method: str, target: str, **data: Any) -> None:
        self.calls.append((method, target))
        self._trace.add_event(f"render.{method}", target, **data)

    def full_render(self, result: LayoutResult, paths: List[ConnectionPath]) -> None:
        self._record("full_render", "*", nodes=len(result.coordinates), connections=len(paths))
        self._renderer.full_render(result, paths)

    def move_node(self, placement_id: str, coordinate: Coordinate, duration_ms: int = 0) -> None:
        self._record(
            "move_node",
            placement_id,
            x=round(coordinate.x, 2),
            y=round(coordinate.y, 2),
            duration_ms=duration_ms,
        )
        self._renderer.move_node(placement_id, coordinate, duration_ms=duration_ms)

    def move_band(self, workstream_id: int, geometry: BandGeometry) -> None:
        self._record("move_band", f"ws-{workstream_id}", center=round(geometry.center, 2))
        self._renderer.move_band(workstream_id, geometry)

    def update_connections(self, paths: Iterable[ConnectionPath]) -> None:
        paths = list(paths)
        self._record("update_connections", "*", ids=[p.connection.id for p in paths])
        self._renderer.update_connections(paths)

    def redraw_all_connections(self, paths: Iterable[ConnectionPath]) -> None:
        paths = list(paths)
        self._record("redraw_all_connections", "*", count=len(paths))
        self._renderer.redraw_all_connections(paths)

    def set_dragging(self, target: str, dragging: bool) -> None:
        self._record("set_dragging", target, dragging=dragging)
        self._renderer.set_dragging(target, dragging)


def describe_layout(result: LayoutResult) -> str:
    """
    Describe a layout result as text, one section per workstream band.

    Placements are listed in x order with their coordinates; user-placed
    ones are flagged with ``*`` and duplicates with ``(dup)``.

    Args:
        result: Output of LayoutEngine.layout

    Returns:
        A multi-line description
    """
    lanes: Dict[int, List[str]] = {ws_id: [] for ws_id in result.band_centers}
    placements = sorted(
        (p for p in result.placements if p.id in result.coordinates),
        key=lambda p: (result.coordinates[p.id].x, result.coordinates[p.id].y),
    )
    for placement in placements:
        coordinate = result.coordinates[placement.id]
        flags = ""
        if placement.id in result.user_placed:
            flags += " *"
        if placement.is_duplicate:
            flags += " (dup)"
        deadline = placement.milestone.deadline
        lanes.setdefault(placement.placement_workstream_id, []).append(
            f"    {placement.id}: {placement.milestone.name!r} "
            f"[{deadline.isoformat() if deadline else 'undated'}] "
            f"({coordinate.x:.1f}, {coordinate.y:.1f}){flags}"
        )

    output = ["=" * 60, "LAYOUT", "=" * 60]
    output.append("Markers: " + ", ".join(m.isoformat() for m in result.markers))
    for ws_id, rows in lanes.items():
        center = result.band_centers.get(ws_id)
        header = f"Workstream {ws_id}"
        if center is not None:
            header += f" (center {center:.1f})"
        output.append("")
        output.append(header)
        output.extend(rows or ["    (empty)"])
    if result.skipped:
        output.append("")
        output.append("Skipped: " + ", ".join(result.skipped))
    return "\n".join(output)
