"""
Tests for the tracer module.

These tests verify the debug tracing infrastructure used to capture
recompute stages and interaction events.
"""

from flightmap.tracer import InteractionTrace, PipelineStage, TraceEvent


class TestPipelineStage:
    """Tests for PipelineStage dataclass."""

    def test_creation(self):
        stage = PipelineStage(name="layout", data={"placements": 7})
        assert stage.name == "layout"
        assert stage.data["placements"] == 7

    def test_str(self):
        """Test string representation lists each data key."""
        result = str(PipelineStage(name="timeline", data={"markers": 2}))
        assert "=== Stage: timeline ===" in result
        assert "markers: 2" in result

    def test_str_truncates_long_values(self):
        result = str(PipelineStage(name="synthesis", data={"ids": "x" * 500}))
        assert "..." in result
        assert "x" * 101 not in result


class TestTraceEvent:
    """Tests for TraceEvent dataclass."""

    def test_str_with_details(self):
        event = TraceEvent("rollback", "10", {"x": 0})
        assert str(event) == "[rollback] 10 (x=0)"

    def test_str_without_details(self):
        assert str(TraceEvent("drag_start", "workstream-1")) == "[drag_start] workstream-1"


class TestInteractionTrace:
    """Tests for InteractionTrace."""

    def test_add_stage_copies_data(self):
        data = {"bands": 2}
        trace = InteractionTrace()
        trace.add_stage("layout", data)
        data["bands"] = 3
        assert trace.get_stage("layout").data == {"bands": 2}

    def test_get_stage_returns_latest(self):
        trace = InteractionTrace()
        trace.add_stage("layout", {"run": 1})
        trace.add_stage("layout", {"run": 2})
        assert trace.get_stage("layout").data["run"] == 2
        assert trace.get_stage("missing") is None

    def test_event_target_is_stringified(self):
        trace = InteractionTrace()
        trace.add_event("upsert", 10, ok=True)
        assert trace.events[0].target == "10"
        assert trace.events[0].data == {"ok": True}

    def test_get_events_filters(self):
        trace = InteractionTrace()
        trace.add_event("drag_move", "10")
        trace.add_event("drag_move", "11")
        trace.add_event("drag_end", "10")
        assert len(trace.get_events()) == 3
        assert len(trace.get_events("drag_move")) == 2
        assert [e.kind for e in trace.get_events(target="10")] == ["drag_move", "drag_end"]
        assert len(trace.get_events("drag_end", "11")) == 0

    def test_clear(self):
        trace = InteractionTrace()
        trace.add_stage("layout", {})
        trace.add_event("drag_move", "10")
        trace.clear()
        assert trace.stages == []
        assert trace.events == []

    def test_summary(self):
        trace = InteractionTrace(container_id=7)
        trace.add_stage("synthesis", {})
        trace.add_event("drag_move", "10")
        trace.add_event("drag_move", "10")
        trace.add_event("rollback", "10")
        summary = trace.summary()
        assert "INTERACTION TRACE SUMMARY" in summary
        assert "Container: 7" in summary
        assert "  - synthesis" in summary
        assert "Total events: 3" in summary
        assert summary.index("drag_move: 2") < summary.index("rollback: 1")

    def test_dump(self):
        trace = InteractionTrace()
        trace.add_stage("layout", {"placements": 7})
        trace.add_event("drag_end", "12", y=300)
        dump = trace.dump()
        assert "DETAILED TRACE" in dump
        assert "=== Stage: layout ===" in dump
        assert "[drag_end] 12 (y=300)" in dump

    def test_dump_to_file(self, tmp_path):
        trace = InteractionTrace()
        trace.add_event("drag_start", "10")
        path = tmp_path / "trace.txt"
        trace.dump_to_file(str(path))
        assert "[drag_start] 10" in path.read_text(encoding="utf-8")
