"""
Renderer contract.

The engine never draws. It tells a renderer what moved; the renderer owns
the actual drawing surface (SVG, canvas, a terminal) and reads coordinates
it is handed, never the arena itself.
"""

from typing import Iterable, List, Protocol

from .connections import ConnectionPath
from .layout import BandGeometry, LayoutResult
from .models import Coordinate


class DiagramRenderer(Protocol):
    """Protocol for objects that draw a flightmap."""

    def full_render(self, result: LayoutResult, paths: List[ConnectionPath]) -> None:
        """Draw everything from scratch."""
        ...

    def move_node(self, placement_id: str, coordinate: Coordinate, duration_ms: int = 0) -> None:
        """Move one node; a positive ``duration_ms`` animates the transition."""
        ...

    def move_band(self, workstream_id: int, geometry: BandGeometry) -> None:
        """Move a lane's label, guide line and band rectangle."""
        ...

    def update_connections(self, paths: Iterable[ConnectionPath]) -> None:
        """Redraw only the given connections."""
        ...

    def redraw_all_connections(self, paths: Iterable[ConnectionPath]) -> None:
        """Redraw every connection."""
        ...

    def set_dragging(self, target: str, dragging: bool) -> None:
        """Toggle the dragging style of a node or band."""
        ...


class NullRenderer:
    """Renderer that draws nothing. Used for headless layout."""

    def full_render(self, result: LayoutResult, paths: List[ConnectionPath]) -> None:
        pass

    def move_node(self, placement_id: str, coordinate: Coordinate, duration_ms: int = 0) -> None:
        pass

    def move_band(self, workstream_id: int, geometry: BandGeometry) -> None:
        pass

    def update_connections(self, paths: Iterable[ConnectionPath]) -> None:
        pass

    def redraw_all_connections(self, paths: Iterable[ConnectionPath]) -> None:
        pass

    def set_dragging(self, target: str, dragging: bool) -> None:
        pass
