"""
Configuration for the flightmap diagram engine.

Layout constants are threaded through the engine as an explicit
``LayoutConfig`` object so that the same pipeline can be exercised at
different diagram sizes. Transport settings for the position backend are read
from the environment through ``ClientSettings``.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class Margins:
    """Space between the diagram edge and its content area, in pixels."""

    top: float = 40.0
    right: float = 150.0
    bottom: float = 30.0
    left: float = 150.0


@dataclass(frozen=True)
class LayoutConfig:
    """
    Geometry and timing constants for layout and interaction.

    Attributes:
        width: Total diagram width in pixels.
        height: Total diagram height in pixels.
        margins: Margins around the content area.
        band_height: Height of a workstream band.
        band_padding: Inset from the band edges that placements must respect.
        node_radius: Radius of a milestone node.
        band_inset: Inset of the default band-center range from the content
            area's top and bottom.
        undated_x: x used for milestones without a deadline.
        min_band_center: Lowest allowed band center after a workstream drag.
        debounce_seconds: Quiet period before a position write is sent.
        move_epsilon: Moves smaller than this (in pixels) are ignored.
        snap_animation_ms: Duration hint for snap-back transitions.
        tick_count: Target tick count used when nicing the time scale.
    """

    width: float = 1440.0
    height: float = 720.0
    margins: Margins = field(default_factory=Margins)
    band_height: float = 600.0
    band_padding: float = 15.0
    node_radius: float = 55.0
    band_inset: float = 100.0
    undated_x: float = 20.0
    min_band_center: float = 20.0
    debounce_seconds: float = 0.25
    move_epsilon: float = 0.5
    snap_animation_ms: int = 300
    tick_count: int = 10

    def __post_init__(self):
        if self.content_width <= 0:
            raise ValueError("width must exceed the left and right margins")
        if self.content_height <= 0:
            raise ValueError("height must exceed the top and bottom margins")
        if self.band_height <= 0:
            raise ValueError("band_height must be positive")
        if self.band_padding < 0 or self.band_padding * 2 >= self.band_height:
            raise ValueError("band_padding must be between 0 and half the band height")
        if self.node_radius <= 0:
            raise ValueError("node_radius must be positive")
        if self.debounce_seconds < 0:
            raise ValueError("debounce_seconds must not be negative")
        if self.tick_count < 1:
            raise ValueError("tick_count must be at least 1")

    @property
    def content_width(self) -> float:
        return self.width - self.margins.left - self.margins.right

    @property
    def content_height(self) -> float:
        return self.height - self.margins.top - self.margins.bottom


class UpsertFailurePolicy(str, Enum):
    """
    What to do when a position write fails.

    IGNORE logs the failure and keeps the optimistic in-memory value; the
    backend catches up on the next successful write or reset. RETRY re-sends
    the write with exponential backoff up to a bounded number of attempts.
    """

    IGNORE = "ignore"
    RETRY = "retry"


class ClientSettings(BaseSettings):
    """Position backend settings, overridable via ``FLIGHTMAP_*`` env vars."""

    model_config = SettingsConfigDict(env_prefix="FLIGHTMAP_")

    api_base_url: str = "http://localhost:8000/api"
    timeout: float = 10.0
    access_token: Optional[str] = None
    cache_dir: Path = Path(".flightmap-cache")
    upsert_failure_policy: UpsertFailurePolicy = UpsertFailurePolicy.IGNORE
    upsert_retry_attempts: int = 3
    upsert_retry_backoff: float = 0.5
