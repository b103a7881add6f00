"""
Flightmap diagram facade.

Wires the pipeline together: plan flattening, placement synthesis, the
timeline, layout, connection indexing, position persistence and the drag
controller, and tells a renderer what to draw.

Example:
    >>> diagram = FlightmapDiagram(plan_data, renderer=my_renderer)
    >>> await diagram.load()
    >>> diagram.drag.start_milestone_drag("12", 400, 300)
    >>> diagram.drag.move(430, 320)
    >>> diagram.drag.end(430, 320)
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Any, List, Mapping, Optional, Union

from .config import ClientSettings, LayoutConfig, UpsertFailurePolicy
from .connections import ConnectionIndexer
from .debug import TracedRenderer
from .drag import DeadlineCallback, DragController, DragState
from .errors import DragStateError
from .hierarchy import flatten_plan
from .layout import CoordinateArena, LayoutEngine, LayoutResult
from .models import DuplicatePlacement, FlatPlan, Placement
from .positions import LocalPositionCache, PositionStore
from .remote import (
    HttpMilestoneClient,
    HttpPositionBackend,
    InMemoryPositionBackend,
    PositionBackend,
)
from .renderer import DiagramRenderer, NullRenderer
from .scheduler import AsyncioScheduler, Scheduler
from .synthesis import PlacementSynthesizer
from .timeline import TimelineIndex
from .tracer import InteractionTrace

logger = logging.getLogger(__name__)


class FlightmapDiagram:
    """
    An interactive flightmap for one container.

    Example:
        >>> diagram = FlightmapDiagram(plan_data, debug=True)
        >>> diagram.recompute()
        >>> print(diagram.get_trace().summary())
    """

    def __init__(
        self,
        plan: Union[FlatPlan, Mapping[str, Any]],
        config: Optional[LayoutConfig] = None,
        backend: Optional[PositionBackend] = None,
        scheduler: Optional[Scheduler] = None,
        renderer: Optional[DiagramRenderer] = None,
        on_deadline_change: Optional[DeadlineCallback] = None,
        cache: Optional[LocalPositionCache] = None,
        failure_policy: UpsertFailurePolicy = UpsertFailurePolicy.IGNORE,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        debug: bool = False,
        today: Optional[date] = None,
    ):
        """
        Initialize the diagram.

        Args:
            plan: A FlatPlan or the nested plan mapping to flatten
            config: Layout constants
            backend: Remote position store (in-memory if omitted)
            scheduler: Scheduler for debounced and background work
            renderer: Receives drawing instructions (nothing is drawn if omitted)
            on_deadline_change: ``async (milestone_id, new_deadline) -> bool``
            cache: Local JSON mirror of the position maps
            failure_policy: What to do when a position write fails
            retry_attempts: Attempts per write under the retry policy
            retry_backoff: First retry delay in seconds under the retry policy
            debug: Record an InteractionTrace
            today: Anchor for placeholder timeline dates
        """
        self.plan = self._coerce_plan(plan)
        self.config = config or LayoutConfig()
        self.backend = backend if backend is not None else InMemoryPositionBackend()
        self.scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self.on_deadline_change = on_deadline_change
        self.today = today
        self._closers: List[Any] = []

        self.trace: Optional[InteractionTrace] = None
        if debug:
            self.trace = InteractionTrace(container_id=self.plan.container_id)
            self.renderer = TracedRenderer(renderer, self.trace)
        else:
            self.renderer = renderer if renderer is not None else NullRenderer()

        self.synthesizer = PlacementSynthesizer(trace=self.trace)
        self.engine = LayoutEngine(self.config, CoordinateArena(), trace=self.trace)
        self.store = PositionStore(
            self.plan.container_id,
            self.config,
            self.backend,
            self.scheduler,
            cache=cache,
            failure_policy=failure_policy,
            retry_attempts=retry_attempts,
            retry_backoff=retry_backoff,
            trace=self.trace,
        )

        self.placements: List[Placement] = []
        self.timeline: Optional[TimelineIndex] = None
        self.indexer: Optional[ConnectionIndexer] = None
        self.drag: Optional[DragController] = None
        self.result: Optional[LayoutResult] = None

    @classmethod
    def from_settings(
        cls,
        plan: Union[FlatPlan, Mapping[str, Any]],
        settings: Optional[ClientSettings] = None,
        **kwargs: Any,
    ) -> "FlightmapDiagram":
        """
        Build a diagram talking to the HTTP position and milestone endpoints.

        Unless overridden through ``kwargs``, the deadline callback PATCHes the
        milestone and the local cache lives under ``settings.cache_dir``.
        """
        settings = settings or ClientSettings()
        plan = cls._coerce_plan(plan)
        backend = HttpPositionBackend.from_settings(settings)
        closers: List[Any] = [backend]

        if "on_deadline_change" not in kwargs:
            milestones = HttpMilestoneClient.from_settings(settings)
            closers.append(milestones)
            kwargs["on_deadline_change"] = milestones.update_deadline
        kwargs.setdefault("cache", LocalPositionCache(settings.cache_dir, plan.container_id))
        kwargs.setdefault("failure_policy", settings.upsert_failure_policy)
        kwargs.setdefault("retry_attempts", settings.upsert_retry_attempts)
        kwargs.setdefault("retry_backoff", settings.upsert_retry_backoff)

        diagram = cls(plan, backend=backend, **kwargs)
        diagram._closers.extend(closers)
        return diagram

    @staticmethod
    def _coerce_plan(plan: Union[FlatPlan, Mapping[str, Any]]) -> FlatPlan:
        if isinstance(plan, FlatPlan):
            return plan
        return flatten_plan(plan)

    @property
    def arena(self) -> CoordinateArena:
        return self.engine.arena

    def get_trace(self) -> Optional[InteractionTrace]:
        """Trace recorded so far, or None when debug is off."""
        return self.trace

    async def load(self) -> LayoutResult:
        """Fetch stored positions, then lay out and render."""
        self.store.cancel_pending()
        await self.store.load()
        return self.recompute()

    def recompute(self) -> LayoutResult:
        """
        Rebuild placements, timeline, layout and connections, then render.

        Stored positions act as overrides; duplicates that the backend has
        never seen get a default record.

        Raises:
            DragStateError: If a drag is in progress.
        """
        if self.drag is not None and self.drag.state is not DragState.IDLE:
            raise DragStateError("cannot recompute the layout during a drag")

        self.placements = self.synthesizer.synthesize(self.plan)
        self.timeline = TimelineIndex.from_milestones(
            self.plan.milestones,
            self.config.content_width,
            self.config.tick_count,
            today=self.today,
        )
        if self.trace is not None:
            start, end = self.timeline.scale.domain
            self.trace.add_stage(
                "timeline",
                {
                    "markers": [m.isoformat() for m in self.timeline.markers],
                    "domain": f"{start.date().isoformat()}..{end.date().isoformat()}",
                },
            )

        self.result = self.engine.layout(
            self.plan,
            self.placements,
            self.timeline,
            self.store.milestone_positions,
            self.store.workstream_positions,
        )
        self.indexer = ConnectionIndexer(self.plan, self.placements, self.arena)
        self.drag = DragController(
            self.config,
            self.engine,
            self.timeline,
            self.placements,
            self.indexer,
            self.store,
            self.scheduler,
            renderer=self.renderer,
            on_deadline_change=self._deadline_changed,
            trace=self.trace,
        )

        for placement in self.placements:
            if isinstance(placement, DuplicatePlacement) and placement.id in self.arena:
                self.store.ensure_duplicate_record(
                    placement, self.engine.band_center(placement.placement_workstream_id)
                )

        self.renderer.full_render(
            self.result, self.indexer.resolve(self.indexer.all_connections())
        )
        return self.result

    async def _deadline_changed(self, milestone_id: str, new_deadline: date) -> bool:
        accepted = True
        if self.on_deadline_change is not None:
            accepted = await self.on_deadline_change(milestone_id, new_deadline)
        if accepted:
            self._apply_deadline(int(milestone_id), new_deadline)
        return accepted

    def _apply_deadline(self, milestone_id: int, new_deadline: date) -> None:
        self.plan.milestones = [
            replace(m, deadline=new_deadline) if m.id == milestone_id else m
            for m in self.plan.milestones
        ]
        if self.drag is not None and self.drag.state is not DragState.IDLE:
            logger.debug("Deferring relayout for milestone %s until the next recompute", milestone_id)
            return
        self.recompute()

    def update_plan(self, plan: Union[FlatPlan, Mapping[str, Any]]) -> LayoutResult:
        """Replace the plan (e.g. after a data refresh) and recompute."""
        self.plan = self._coerce_plan(plan)
        return self.recompute()

    async def reset_positions(self) -> bool:
        """
        Clear every stored position, locally and remotely, and relayout.

        Returns:
            True if the remote store confirmed the reset.
        """
        if self.drag is not None:
            self.drag.cancel()
        ok = await self.store.reset()
        self.recompute()
        return ok

    def close(self) -> None:
        """Cancel the active drag and every pending timer."""
        if self.drag is not None:
            self.drag.cancel()
        self.store.close()
        if isinstance(self.scheduler, AsyncioScheduler):
            self.scheduler.close()
        else:
            self.scheduler.cancel_all()

    async def aclose(self) -> None:
        """Close, then release HTTP clients created by ``from_settings``."""
        self.close()
        for closer in self._closers:
            await closer.aclose()
        self._closers = []
