"""Unit tests for the drag module."""

from dataclasses import replace
from datetime import date

import pytest

from flightmap.drag import DragController, DragState, MilestoneDrop, WorkstreamDrop
from flightmap.errors import DragStateError
from flightmap.models import Coordinate
from flightmap.tracer import InteractionTrace

MARCH = date(2025, 3, 1)
APRIL = date(2025, 4, 1)


@pytest.fixture
def controller(config, placements, timeline, engine, laid_out, indexer, store, manual_scheduler, renderer):
    """Drag controller over the laid-out sample plan."""
    return DragController(
        config,
        engine,
        timeline,
        placements,
        indexer,
        store,
        manual_scheduler,
        renderer=renderer,
        trace=InteractionTrace(),
    )


def answer(value):
    async def callback(milestone_id, new_deadline):
        callback.calls.append((milestone_id, new_deadline))
        return value

    callback.calls = []
    return callback


class TestTransitions:
    """Tests for the state machine's undefined transitions."""

    def test_starts_idle(self, controller):
        assert controller.state is DragState.IDLE
        assert controller.active_target is None

    def test_unknown_placement(self, controller, caplog):
        assert controller.start_milestone_drag("404", 0, 0) is False
        assert controller.state is DragState.IDLE
        assert "unknown placement" in caplog.text

    def test_unknown_workstream(self, controller):
        assert controller.start_workstream_drag(99, 0) is False
        assert controller.state is DragState.IDLE

    def test_second_drag_rejected(self, controller):
        controller.start_milestone_drag("10", 0, 250)
        with pytest.raises(DragStateError):
            controller.start_milestone_drag("11", 1140, 167.5)
        with pytest.raises(DragStateError):
            controller.start_workstream_drag(2, 400)

    def test_move_and_end_require_a_drag(self, controller):
        with pytest.raises(DragStateError):
            controller.move(1, 1)
        with pytest.raises(DragStateError):
            controller.end(1, 1)

    def test_end_returns_to_idle(self, controller):
        controller.start_milestone_drag("10", 0, 250)
        controller.end(0, 250)
        assert controller.state is DragState.IDLE
        assert controller.start_workstream_drag(1, 250) is True


class TestMilestoneDrag:
    """Tests for dragging a milestone placement."""

    def test_move_updates_arena_and_touching_connections(self, controller, renderer, engine):
        controller.start_milestone_drag("10", 0, 250)
        controller.move(100, 300)
        assert engine.arena.get("10") == Coordinate(100, 300)
        assert renderer.named("move_node")[-1] == ("10", Coordinate(100, 300), 0)
        assert set(renderer.named("update_connections")[-1]) == {
            "activity-100-10-11",
            "activity-101-10-11",
            "cross-activity-100-21",
        }
        assert renderer.named("full_render") == []

    def test_move_clamps_to_band(self, controller, engine):
        controller.start_milestone_drag("10", 0, 250)
        controller.move(0, 1000)
        assert engine.arena.get("10").y == 535
        controller.move(0, -1000)
        assert engine.arena.get("10").y == -35

    def test_snap_uses_configured_duration(self, controller, config, renderer):
        controller.config = replace(config, snap_animation_ms=120)
        controller.start_milestone_drag("10", 0, 250)
        controller.end(400, 250)
        assert renderer.named("move_node")[-1] == ("10", Coordinate(0, 250), 120)

    def test_band_is_read_live(self, controller, engine):
        """Test the clamp uses the band's current center, not a snapshot."""
        controller.start_milestone_drag("10", 0, 250)
        engine.arena.set_band(1, 100)
        controller.move(0, 500)
        assert engine.arena.get("10").y == 385

    def test_tiny_moves_are_ignored(self, controller, renderer):
        controller.start_milestone_drag("10", 0, 250)
        controller.move(0.2, 250.2)
        assert renderer.named("move_node") == []

    def test_end_snaps_to_nearest_marker(self, controller, engine, store, manual_scheduler):
        controller.start_milestone_drag("10", 0, 250)
        controller.move(500, 260)
        drop = controller.end(1000, 270)
        assert isinstance(drop, MilestoneDrop)
        assert drop.deadline == APRIL
        assert drop.coordinate == Coordinate(1140, 270)
        assert engine.arena.get("10") == Coordinate(1140, 270)
        assert store.milestone_positions["10"] == 270
        assert "position:milestone:10" in manual_scheduler.pending_keys()

    def test_end_clamps_y(self, controller):
        controller.start_milestone_drag("10", 0, 250)
        drop = controller.end(0, 5000)
        assert drop.coordinate == Coordinate(0, 535)

    def test_dragging_style_toggled(self, controller, renderer):
        controller.start_milestone_drag("10", 0, 250)
        controller.end(0, 250)
        assert renderer.named("set_dragging") == [("10", True), ("10", False)]

    def test_same_marker_does_not_change_deadline(self, controller, manual_scheduler):
        controller.on_deadline_change = answer(True)
        controller.start_milestone_drag("10", 0, 250)
        drop = controller.end(300, 280)
        assert drop.deadline == MARCH
        assert drop.deadline_changed is False
        assert manual_scheduler.spawned == []

    def test_duplicate_never_changes_deadline(self, controller, store, manual_scheduler):
        controller.on_deadline_change = answer(True)
        controller.start_milestone_drag("duplicate-10-20", 0, 441.25)
        drop = controller.end(1100, 450)
        assert drop.deadline == APRIL
        assert drop.deadline_changed is False
        assert manual_scheduler.spawned == []
        assert store.milestone_positions["duplicate-10-20"] == 450
        assert "position:milestone:duplicate-10-20" in manual_scheduler.pending_keys()

    def test_cancel_restores_origin(self, controller, engine):
        controller.start_milestone_drag("10", 0, 250)
        controller.move(400, 300)
        controller.cancel()
        assert engine.arena.get("10") == Coordinate(0, 250)
        assert controller.state is DragState.IDLE


class TestDeadlineChange:
    """Tests for the deadline callback and x rollback."""

    def test_accepted(self, controller, engine, manual_scheduler):
        callback = answer(True)
        controller.on_deadline_change = callback
        controller.start_milestone_drag("10", 0, 250)
        drop = controller.end(1000, 270)
        assert drop.deadline_changed is True
        assert manual_scheduler.run_spawned() == [True]
        assert callback.calls == [("10", APRIL)]
        assert engine.arena.get("10") == Coordinate(1140, 270)

    def test_rejected_rolls_back_x_only(self, controller, engine, store, renderer, manual_scheduler):
        controller.on_deadline_change = answer(False)
        controller.start_milestone_drag("10", 0, 250)
        controller.end(1000, 270)
        assert manual_scheduler.run_spawned() == [False]
        assert engine.arena.get("10") == Coordinate(0, 270)
        assert store.milestone_positions["10"] == 270
        assert renderer.named("move_node")[-1] == ("10", Coordinate(0, 270), 300)
        assert controller.trace.get_events("rollback", "10")

    def test_callback_error_counts_as_rejection(self, controller, engine, manual_scheduler, caplog):
        async def broken(milestone_id, new_deadline):
            raise RuntimeError("backend down")

        controller.on_deadline_change = broken
        controller.start_milestone_drag("10", 0, 250)
        controller.end(1000, 270)
        assert manual_scheduler.run_spawned() == [False]
        assert engine.arena.get("10").x == 0
        assert "backend down" in caplog.text

    def test_no_callback_accepts(self, controller, engine, manual_scheduler):
        controller.start_milestone_drag("10", 0, 250)
        controller.end(1000, 270)
        assert manual_scheduler.run_spawned() == [True]
        assert engine.arena.get("10").x == 1140


class TestWorkstreamDrag:
    """Tests for dragging a workstream lane."""

    def test_move_shifts_band_and_members(self, controller, engine, renderer):
        controller.start_workstream_drag(1, 250)
        controller.move(0, 300)
        assert engine.arena.get_band(1) == 300
        assert engine.arena.get("10").y == 300
        assert engine.arena.get("11").y == 217.5
        assert engine.arena.get("activity-duplicate-21-100").y == 382.5
        assert engine.arena.get("20").y == 358.75
        assert renderer.named("move_band")[-1] == (1, 300)
        assert set(renderer.named("update_connections")[-1]) == {
            "activity-100-10-11",
            "activity-101-10-11",
            "cross-activity-100-21",
            "dependency-11-12",
        }

    def test_end_commits_band_and_members(self, controller, store, manual_scheduler):
        controller.start_workstream_drag(1, 250)
        drop = controller.end(0, 300)
        assert isinstance(drop, WorkstreamDrop)
        assert drop.center == 300
        assert drop.members["11"] == 217.5
        assert store.workstream_positions == {1: 300}
        assert store.milestone_positions["12"] == 300
        pending = manual_scheduler.pending_keys()
        assert "position:workstream:1" in pending
        assert not any(key.startswith("position:milestone:") for key in pending)
        assert "settle:1" in pending

    def test_minimum_band_center(self, controller, engine):
        controller.start_workstream_drag(1, 250)
        drop = controller.end(0, -400)
        assert drop.center == 20
        assert engine.arena.get_band(1) == 20
        assert engine.arena.get("10").y == 20
        assert engine.arena.get("11").y == -62.5

    def test_settle_enforces_containment(self, controller, engine, store, renderer, manual_scheduler):
        """Test the deferred settle step clamps strays and redraws the lane."""
        controller.start_workstream_drag(1, 250)
        controller.end(0, 300)
        engine.arena.update("11", y=900)
        manual_scheduler.fire("settle:")
        assert engine.arena.get("11").y == 585
        assert store.milestone_positions["11"] == 585
        assert ("11", Coordinate(1140, 585), 300) in renderer.named("move_node")
        assert renderer.named("redraw_all_connections")

    def test_settle_without_strays(self, controller, engine):
        controller.start_workstream_drag(2, 400)
        controller.end(0, 420)
        before = engine.arena.snapshot()
        assert controller.settle_workstream(2) == {}
        assert engine.arena.snapshot() == before

    def test_cancel_restores_band(self, controller, engine):
        controller.start_workstream_drag(1, 250)
        controller.move(0, 350)
        controller.cancel()
        assert engine.arena.get_band(1) == 250
        assert engine.arena.get("11").y == 167.5


class TestTracing:
    """Tests for interaction events."""

    def test_events_recorded(self, controller):
        controller.start_milestone_drag("10", 0, 250)
        controller.move(0, 300)
        controller.end(0, 300)
        kinds = [e.kind for e in controller.trace.get_events(target="10")]
        assert kinds == ["drag_start", "drag_move", "drag_end"]
