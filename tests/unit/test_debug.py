"""Tests for the debug module."""

from flightmap.debug import TracedRenderer, describe_layout
from flightmap.models import Coordinate
from flightmap.tracer import InteractionTrace


class TestTracedRenderer:
    """Tests for TracedRenderer."""

    def test_forwards_and_records(self, renderer):
        trace = InteractionTrace()
        traced = TracedRenderer(renderer, trace)
        traced.move_node("10", Coordinate(12.3456, 250), duration_ms=300)
        traced.set_dragging("10", False)

        assert renderer.named("move_node") == [("10", Coordinate(12.3456, 250), 300)]
        assert renderer.named("set_dragging") == [("10", False)]
        assert traced.calls == [("move_node", "10"), ("set_dragging", "10")]

        event = trace.get_events("render.move_node")[0]
        assert event.target == "10"
        assert event.data == {"x": 12.35, "y": 250, "duration_ms": 300}

    def test_without_wrapped_renderer(self):
        trace = InteractionTrace()
        traced = TracedRenderer(None, trace)
        traced.set_dragging("workstream-1", True)
        assert trace.get_events(target="workstream-1")

    def test_full_render(self, renderer, laid_out, indexer):
        trace = InteractionTrace()
        traced = TracedRenderer(renderer, trace)
        paths = indexer.resolve(indexer.all_connections())
        traced.full_render(laid_out, paths)
        assert renderer.full_renders == 1
        event = trace.get_events("render.full_render")[0]
        assert event.data == {"nodes": 7, "connections": 5}

    def test_connection_updates(self, renderer, indexer):
        trace = InteractionTrace()
        traced = TracedRenderer(renderer, trace)
        traced.update_connections(iter(indexer.paths_for("12")))
        assert renderer.named("update_connections") == [("dependency-11-12",)]
        assert trace.get_events("render.update_connections")[0].data["ids"] == [
            "dependency-11-12"
        ]

    def test_move_band(self, renderer, engine, laid_out):
        trace = InteractionTrace()
        traced = TracedRenderer(renderer, trace)
        traced.move_band(2, engine.band_geometry(2))
        assert trace.get_events("render.move_band", "ws-2")[0].data == {"center": 400}


class TestDescribeLayout:
    """Tests for describe_layout."""

    def test_sections(self, laid_out):
        text = describe_layout(laid_out)
        assert "LAYOUT" in text
        assert "Markers: 2025-03-01, 2025-04-01" in text
        assert "Workstream 1 (center 250.0)" in text
        assert "Workstream 2 (center 400.0)" in text
        assert "10: 'API frozen' [2025-03-01] (0.0, 250.0)" in text

    def test_rows_in_x_order(self, laid_out):
        text = describe_layout(laid_out)
        lane = text.split("Workstream 1")[1].split("Workstream 2")[0]
        order = [line.split(":")[0].strip() for line in lane.splitlines()[1:] if line.strip()]
        assert order == ["10", "11", "12", "activity-duplicate-21-100"]

    def test_flags(self, laid_out):
        laid_out.user_placed.add("11")
        text = describe_layout(laid_out)
        assert "(1140.0, 167.5) *" in text
        duplicate = [line for line in text.splitlines() if line.strip().startswith("duplicate-10-20:")]
        assert duplicate[0].endswith("(dup)")
        assert "*" not in duplicate[0]

    def test_skipped(self, laid_out):
        laid_out.skipped.append("99")
        assert describe_layout(laid_out).endswith("Skipped: 99")
