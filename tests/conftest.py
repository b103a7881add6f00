"""Pytest configuration and shared fixtures for flightmap tests."""

import asyncio
from typing import Callable, Dict, List, Tuple

import pytest

from flightmap import (
    ConnectionIndexer,
    InMemoryPositionBackend,
    LayoutConfig,
    LayoutEngine,
    PlacementSynthesizer,
    PositionStore,
    TimelineIndex,
    flatten_plan,
)


@pytest.fixture
def sample_plan_data():
    """
    Two workstreams with same-day milestones and cross-lane links.

    Platform (1): 10 (Mar 1), 11 and 12 (Apr 1); 12 depends on 11.
    Product (2):  20 (Mar 1) depends on 10; 21 (Apr 1).
    Activities 100 and 101 both run 10 -> 11; 100 also supports 21.
    """
    return {
        "id": 7,
        "name": "Launch",
        "programs": [
            {
                "id": 1,
                "workstreams": [
                    {
                        "id": 1,
                        "name": "Platform",
                        "color": "#336699",
                        "milestones": [
                            {
                                "id": 10,
                                "name": "API frozen",
                                "deadline": "2025-03-01",
                                "status": "completed",
                                "activities": [
                                    {
                                        "id": 100,
                                        "name": "Build SDK",
                                        "target_milestone": 11,
                                        "supported_milestones": [21],
                                    },
                                    {"id": 101, "name": "Write docs", "target_milestone": 11},
                                ],
                            },
                            {"id": 11, "name": "SDK beta", "deadline": "2025-04-01"},
                            {
                                "id": 12,
                                "name": "SDK GA",
                                "deadline": "2025-04-01T00:00:00Z",
                                "dependencies": [11],
                            },
                        ],
                    },
                    {
                        "id": 2,
                        "name": "Product",
                        "milestones": [
                            {
                                "id": 20,
                                "name": "Design review",
                                "deadline": "2025-03-01",
                                "status": "in-progress",
                                "dependencies": [10],
                            },
                            {"id": 21, "name": "Public launch", "deadline": "2025-04-01"},
                        ],
                    },
                ],
            }
        ],
    }


@pytest.fixture
def flat_plan(sample_plan_data):
    """Flattened sample plan."""
    return flatten_plan(sample_plan_data)


@pytest.fixture
def config():
    """Default geometry with a short debounce window."""
    return LayoutConfig(debounce_seconds=0.01)


@pytest.fixture
def tight_config():
    """Narrow bands so containment is easy to trigger."""
    return LayoutConfig(band_height=200.0, debounce_seconds=0.01)


@pytest.fixture
def placements(flat_plan):
    """Placements synthesized from the sample plan."""
    return PlacementSynthesizer().synthesize(flat_plan)


@pytest.fixture
def timeline(flat_plan, config):
    """Timeline over the sample plan's deadlines."""
    return TimelineIndex.from_milestones(flat_plan.milestones, config.content_width)


@pytest.fixture
def engine(config):
    """Layout engine with the default geometry."""
    return LayoutEngine(config)


@pytest.fixture
def laid_out(flat_plan, placements, timeline, engine):
    """Layout result of the sample plan with no stored positions."""
    return engine.layout(flat_plan, placements, timeline)


@pytest.fixture
def indexer(flat_plan, placements, engine, laid_out):
    """Connection indexer over the laid-out sample plan."""
    return ConnectionIndexer(flat_plan, placements, engine.arena)


@pytest.fixture
def backend():
    """In-memory position backend."""
    return InMemoryPositionBackend()


class ManualScheduler:
    """
    Scheduler test double that runs callbacks only when told to.

    Spawned awaitables are collected and can be run with ``run_spawned``.
    """

    def __init__(self):
        self.timers: Dict[str, Tuple[Callable[[], None], float]] = {}
        self.spawned: List = []

    def schedule(self, key, callback, delay):
        self.timers[key] = (callback, delay)

    def call_soon(self, key, callback):
        self.timers[key] = (callback, 0.0)

    def cancel(self, key):
        return self.timers.pop(key, None) is not None

    def cancel_all(self, prefix=""):
        for key in [k for k in self.timers if k.startswith(prefix)]:
            del self.timers[key]

    def pending_keys(self):
        return sorted(self.timers)

    def spawn(self, awaitable):
        self.spawned.append(awaitable)
        return None

    def fire(self, prefix=""):
        """Run every pending callback whose key starts with ``prefix``."""
        for key in [k for k in self.timers if k.startswith(prefix)]:
            callback, _ = self.timers.pop(key)
            callback()

    def run_spawned(self):
        """Run collected awaitables to completion and return their results."""
        pending, self.spawned = self.spawned, []

        async def run_all():
            return [await awaitable for awaitable in pending]

        return asyncio.run(run_all())


class RecordingRenderer:
    """Renderer that remembers every call."""

    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []
        self.full_renders = 0

    def full_render(self, result, paths):
        self.full_renders += 1
        self.calls.append(("full_render", (len(paths),)))

    def move_node(self, placement_id, coordinate, duration_ms=0):
        self.calls.append(("move_node", (placement_id, coordinate, duration_ms)))

    def move_band(self, workstream_id, geometry):
        self.calls.append(("move_band", (workstream_id, geometry.center)))

    def update_connections(self, paths):
        self.calls.append(("update_connections", tuple(p.connection.id for p in paths)))

    def redraw_all_connections(self, paths):
        self.calls.append(("redraw_all_connections", tuple(p.connection.id for p in paths)))

    def set_dragging(self, target, dragging):
        self.calls.append(("set_dragging", (target, dragging)))

    def named(self, name):
        return [args for call, args in self.calls if call == name]


@pytest.fixture
def manual_scheduler():
    """Scheduler whose timers fire only on demand."""
    return ManualScheduler()


@pytest.fixture
def renderer():
    """Renderer that records calls."""
    return RecordingRenderer()


@pytest.fixture
def store(config, backend, manual_scheduler):
    """Position store for container 7 on the manual scheduler."""
    return PositionStore(7, config, backend, manual_scheduler)
