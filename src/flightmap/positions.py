"""
Position persistence.

Vertical positions are stored normalized to the content height ("relative
Y") so they survive diagram resizes. ``PositionStore`` keeps the absolute
positions used by layout, mirrors them to a local JSON cache, and writes them
to the remote backend through per-node debounced upserts.
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, Mapping, Optional, Set

from .config import LayoutConfig, UpsertFailurePolicy
from .errors import PositionStoreError
from .models import (
    DuplicatePlacement,
    NodeType,
    Placement,
    PositionUpsert,
    RemoteNodePosition,
)
from .remote import PositionBackend
from .scheduler import Scheduler

if TYPE_CHECKING:
    from .tracer import InteractionTrace

logger = logging.getLogger(__name__)

POSITION_KEY_PREFIX = "position:"
CACHE_KEY_PREFIX = "position-cache:"
RETRY_KEY_PREFIX = "position-retry:"


def to_relative(absolute_y: float, margin_top: float, content_height: float) -> float:
    return (absolute_y - margin_top) / content_height


def to_absolute(relative_y: float, margin_top: float, content_height: float) -> float:
    return margin_top + relative_y * content_height


class LocalPositionCache:
    """
    JSON file mirror of the position maps for one container.

    Files are named ``flightmap-<node type>-positions-<container>.json`` and
    hold ``{node key: {"y": absolute y}}``. Read and write failures are logged
    and never propagate; the cache is a fast path, not the source of truth.
    """

    def __init__(self, cache_dir: Path, container_id: Optional[int]):
        self.cache_dir = Path(cache_dir)
        self.container_id = container_id

    def path_for(self, node_type: NodeType) -> Path:
        return self.cache_dir / f"flightmap-{node_type.value}-positions-{self.container_id}.json"

    def load(self, node_type: NodeType) -> Dict[str, float]:
        path = self.path_for(node_type)
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return {str(key): float(value["y"]) for key, value in raw.items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error("Error loading %s positions from %s: %s", node_type.value, path, exc)
            return {}

    def save(self, node_type: NodeType, positions: Mapping[object, float]) -> None:
        path = self.path_for(node_type)
        payload = {str(key): {"y": y} for key, y in positions.items()}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            logger.error("Error saving %s positions to %s: %s", node_type.value, path, exc)

    def clear(self) -> None:
        for node_type in NodeType:
            try:
                self.path_for(node_type).unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.error("Error clearing %s position cache: %s", node_type.value, exc)


class PositionStore:
    """
    In-memory position maps with local and remote persistence.

    Attributes:
        milestone_positions: Absolute y per placement id (numeric id as a
            string for originals, duplicate key for duplicates).
        workstream_positions: Absolute band center per workstream id.
    """

    def __init__(
        self,
        container_id: Optional[int],
        config: LayoutConfig,
        backend: PositionBackend,
        scheduler: Scheduler,
        cache: Optional[LocalPositionCache] = None,
        failure_policy: UpsertFailurePolicy = UpsertFailurePolicy.IGNORE,
        retry_attempts: int = 3,
        retry_backoff: float = 0.5,
        trace: Optional["InteractionTrace"] = None,
    ):
        self.container_id = container_id
        self.config = config
        self.backend = backend
        self.scheduler = scheduler
        self.cache = cache
        self.failure_policy = failure_policy
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.trace = trace

        self.milestone_positions: Dict[str, float] = {}
        self.workstream_positions: Dict[int, float] = {}
        self._remote_duplicate_keys: Set[str] = set()
        self._materialized: Set[str] = set()
        # Newest unsent or retrying upsert per debounce key
        self._latest: Dict[str, PositionUpsert] = {}

    # -- conversion ---------------------------------------------------------

    def to_relative(self, absolute_y: float) -> float:
        return to_relative(absolute_y, self.config.margins.top, self.config.content_height)

    def to_absolute(self, relative_y: float) -> float:
        return to_absolute(relative_y, self.config.margins.top, self.config.content_height)

    # -- loading ------------------------------------------------------------

    async def load(self) -> bool:
        """
        Seed the position maps from the remote store.

        Falls back to the local cache when the remote fetch fails.

        Returns:
            True when the remote store answered, False when the cache was used.
        """
        try:
            milestone_records = await self.backend.fetch_positions(
                self.container_id, NodeType.MILESTONE
            )
            workstream_records = await self.backend.fetch_positions(
                self.container_id, NodeType.WORKSTREAM
            )
        except PositionStoreError as exc:
            logger.warning("Falling back to cached positions: %s", exc)
            self._load_from_cache()
            return False

        self.apply_remote(milestone_records, workstream_records)
        return True

    def apply_remote(
        self,
        milestone_records: Iterable[RemoteNodePosition],
        workstream_records: Iterable[RemoteNodePosition],
    ) -> None:
        """Replace the in-memory maps with fetched records."""
        self.milestone_positions = {}
        self._remote_duplicate_keys = set()
        for record in milestone_records:
            self.milestone_positions[record.state_key()] = self.to_absolute(record.rel_y)
            if record.is_duplicate and record.duplicate_key:
                self._remote_duplicate_keys.add(record.duplicate_key)

        self.workstream_positions = {}
        for record in workstream_records:
            try:
                ws_id = int(record.node_id)
            except ValueError:
                logger.warning("Ignoring workstream position with id %r", record.node_id)
                continue
            self.workstream_positions[ws_id] = self.to_absolute(record.rel_y)

    def _load_from_cache(self) -> None:
        if self.cache is None:
            return
        self.milestone_positions = self.cache.load(NodeType.MILESTONE)
        workstreams = {}
        for key, y in self.cache.load(NodeType.WORKSTREAM).items():
            try:
                workstreams[int(key)] = y
            except ValueError:
                continue
        self.workstream_positions = workstreams

    # -- writes -------------------------------------------------------------

    def set_milestone_position(self, placement: Placement, absolute_y: float) -> None:
        """Record a placement's y and queue a debounced remote write."""
        self.milestone_positions[placement.id] = absolute_y
        self._save_cache_later(NodeType.MILESTONE)
        if isinstance(placement, DuplicatePlacement):
            upsert = self._upsert(
                NodeType.MILESTONE,
                placement.duplicate_key,
                absolute_y,
                is_duplicate=True,
                duplicate_key=placement.duplicate_key,
                original_node_id=placement.original_milestone_id,
            )
        else:
            upsert = self._upsert(NodeType.MILESTONE, placement.persistence_key, absolute_y)
        self.queue_upsert(upsert)

    def set_workstream_position(self, workstream_id: int, absolute_y: float) -> None:
        """Record a band center and queue a debounced remote write."""
        self.workstream_positions[workstream_id] = absolute_y
        self._save_cache_later(NodeType.WORKSTREAM)
        self.queue_upsert(self._upsert(NodeType.WORKSTREAM, workstream_id, absolute_y))

    def record_milestone_positions(self, positions: Mapping[str, float]) -> None:
        """Batch-update the in-memory map and local cache without remote writes."""
        if not positions:
            return
        self.milestone_positions.update(positions)
        self._save_cache_later(NodeType.MILESTONE)

    def _upsert(
        self,
        node_type: NodeType,
        node_id,
        absolute_y: float,
        is_duplicate: bool = False,
        duplicate_key: str = "",
        original_node_id: Optional[int] = None,
    ) -> PositionUpsert:
        return PositionUpsert(
            container=self.container_id,
            node_type=node_type,
            node_id=node_id,
            rel_y=self.to_relative(absolute_y),
            is_duplicate=is_duplicate,
            duplicate_key=duplicate_key,
            original_node_id=original_node_id,
        )

    def queue_upsert(self, upsert: PositionUpsert) -> None:
        """
        Send ``upsert`` once the node has been quiet for the debounce window.

        A newer write for the same node replaces the pending one and cancels
        any retry of an older value, so a burst of updates produces a single
        request carrying the last value.
        """
        self._latest[upsert.debounce_key] = upsert
        self.scheduler.cancel(RETRY_KEY_PREFIX + upsert.debounce_key)
        self.scheduler.schedule(
            upsert.debounce_key,
            lambda: self.scheduler.spawn(self._send(upsert)),
            self.config.debounce_seconds,
        )

    def _superseded(self, upsert: PositionUpsert) -> bool:
        return self._latest.get(upsert.debounce_key) is not upsert

    def _forget(self, upsert: PositionUpsert) -> None:
        if not self._superseded(upsert):
            del self._latest[upsert.debounce_key]

    async def _send(self, upsert: PositionUpsert, attempt: int = 1) -> bool:
        if attempt > 1 and self._superseded(upsert):
            return False
        try:
            await self.backend.upsert_position(upsert)
        except PositionStoreError as exc:
            if (
                self.failure_policy is UpsertFailurePolicy.RETRY
                and attempt < self.retry_attempts
                and not self._superseded(upsert)
            ):
                delay = self.retry_backoff * 2 ** (attempt - 1)
                logger.info(
                    "Retrying position write for %s in %.2fs (attempt %d): %s",
                    upsert.node_id,
                    delay,
                    attempt + 1,
                    exc,
                )
                self.scheduler.schedule(
                    RETRY_KEY_PREFIX + upsert.debounce_key,
                    lambda: self.scheduler.spawn(self._send(upsert, attempt + 1)),
                    delay,
                )
            else:
                logger.warning("Position write for %s failed: %s", upsert.node_id, exc)
                self._forget(upsert)
            self._event(upsert, ok=False, attempt=attempt)
            return False
        self._forget(upsert)
        self._event(upsert, ok=True, attempt=attempt)
        return True

    def _event(self, upsert: PositionUpsert, **data) -> None:
        if self.trace is not None:
            self.trace.add_event(
                "upsert", upsert.debounce_key, rel_y=round(upsert.rel_y, 4), **data
            )

    def _save_cache_later(self, node_type: NodeType) -> None:
        if self.cache is None:
            return
        self.scheduler.schedule(
            CACHE_KEY_PREFIX + node_type.value,
            lambda: self.cache.save(node_type, self._positions_for(node_type)),
            self.config.debounce_seconds,
        )

    def _positions_for(self, node_type: NodeType) -> Mapping[object, float]:
        if node_type is NodeType.MILESTONE:
            return self.milestone_positions
        return self.workstream_positions

    # -- duplicates ---------------------------------------------------------

    def ensure_duplicate_record(self, placement: DuplicatePlacement, band_y: float) -> bool:
        """
        Persist a default position for a duplicate the backend has never seen.

        Args:
            placement: Duplicate placement being drawn.
            band_y: Current center of the duplicate's workstream band.

        Returns:
            True if a write was issued.
        """
        key = placement.duplicate_key
        if key in self._materialized:
            return False
        self._materialized.add(key)
        # A cached position means the record exists even if the fetch failed
        if key in self._remote_duplicate_keys or key in self.milestone_positions:
            return False

        relative = self.to_relative(band_y)
        if not 0 < relative <= 1:
            relative = 0.5
        logger.info("Creating backend record for duplicate milestone %s", key)
        upsert = PositionUpsert(
            container=self.container_id,
            node_type=NodeType.MILESTONE,
            node_id=key,
            rel_y=relative,
            is_duplicate=True,
            duplicate_key=key,
            original_node_id=placement.original_milestone_id,
        )
        self._latest[upsert.debounce_key] = upsert
        self.scheduler.spawn(self._send(upsert))
        self._remote_duplicate_keys.add(key)
        return True

    # -- lifecycle ----------------------------------------------------------

    async def reset(self) -> bool:
        """
        Drop every stored position, locally and remotely.

        Returns:
            True if the remote store confirmed the reset.
        """
        self.cancel_pending()
        self.milestone_positions = {}
        self.workstream_positions = {}
        self._remote_duplicate_keys = set()
        self._materialized = set()
        # Writes still in flight must not schedule retries past the reset
        self._latest = {}
        if self.cache is not None:
            self.cache.clear()
        try:
            await self.backend.reset_positions(self.container_id)
        except PositionStoreError as exc:
            logger.error("Failed to reset positions on server: %s", exc)
            return False
        return True

    def cancel_pending(self) -> None:
        """Cancel every pending write, retry and cache save."""
        for prefix in (POSITION_KEY_PREFIX, CACHE_KEY_PREFIX, RETRY_KEY_PREFIX):
            self.scheduler.cancel_all(prefix)

    def close(self) -> None:
        self.cancel_pending()
