"""The reconciliation loop.

One task per observation source pushes into a single bounded queue; exactly one
drain task applies events to the Store, rebuilds the Topology and calls the
reconcilers.  Reconciliation is therefore serialized and needs no locking.

    sources --RawEvent/SyncMarker--> queue --> drain --> Store
                                                 |
                                                 +--> builder.build(Store) --> reconcilers

Nothing reconciles until every source has delivered its initial listing.
Events seen before that are still applied to the Store and are handed to the
first cycle.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from kubepolicy.apis.convert import ConversionError, Converter
from kubepolicy.cache.store import Store
from kubepolicy.collector.source import ObservationError, ObservationSource, RawEvent, SyncMarker
from kubepolicy.graph import Topology
from kubepolicy.machinery.builder import TopologyBuilder
from kubepolicy.models.config import ControllerConfig
from kubepolicy.models.events import EventType, ResourceEvent
from kubepolicy.observability.logging import bind_cycle, get_logger, unbind_cycle
from kubepolicy.observability.metrics import (
    controller_ready,
    conversion_errors_total,
    events_total,
    queue_depth,
    reconcile_cycles_total,
    reconcile_duration_seconds,
    reconciler_failures_total,
)

if TYPE_CHECKING:
    from kubepolicy.client import ResourceClient

_logger = get_logger("controller")


class ControllerState(StrEnum):
    NOT_READY = "not_ready"
    READY = "ready"
    RECONCILING = "reconciling"
    STOPPED = "stopped"


@dataclass
class ReconcileContext:
    """Per-cycle context handed to every reconciler.

    ``values`` is scratch space shared by the reconcilers of one cycle (a
    workflow's precondition can leave data for its tasks).  It is discarded
    with the cycle.
    """

    cycle: int
    client: ResourceClient | None = None
    values: dict[str, Any] = field(default_factory=dict)


Reconciler = Callable[[ReconcileContext, Sequence[ResourceEvent], Topology], Awaitable[None] | None]


async def invoke(
    reconciler: Reconciler, ctx: ReconcileContext, events: Sequence[ResourceEvent], topology: Topology
) -> None:
    """Call a sync or async reconciler."""
    result = reconciler(ctx, events, topology)
    if inspect.isawaitable(result):
        await result


def _reconciler_name(reconciler: Reconciler) -> str:
    return getattr(reconciler, "__name__", None) or getattr(reconciler, "name", None) or type(reconciler).__name__


class Controller:
    """Owns the Store, the event queue and the reconciliation loop."""

    def __init__(
        self,
        sources: Sequence[ObservationSource],
        builder: TopologyBuilder,
        config: ControllerConfig | None = None,
        converter: Converter | None = None,
        client: ResourceClient | None = None,
    ) -> None:
        self._sources = list(sources)
        self._builder = builder
        self._config = config or ControllerConfig()
        self._converter = converter or Converter()
        self._client = client
        self._store = Store()
        self._queue: asyncio.Queue[RawEvent | SyncMarker] = asyncio.Queue(maxsize=self._config.queue_size)
        self._reconcilers: list[tuple[str, Reconciler]] = []
        self._state = ControllerState.NOT_READY
        self._synced: set[str] = set()
        self._stopping = asyncio.Event()
        self._fatal: ObservationError | None = None
        self._cycle = 0

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def cycles(self) -> int:
        return self._cycle

    def is_ready(self) -> bool:
        return self._state in (ControllerState.READY, ControllerState.RECONCILING)

    def add_reconciler(self, reconciler: Reconciler, name: str | None = None) -> None:
        """Register *reconciler*.  Reconcilers run in registration order."""
        self._reconcilers.append((name or _reconciler_name(reconciler), reconciler))

    def build_topology(self) -> Topology:
        """Build a fresh topology from the current Store."""
        return self._builder.build(self._store)

    def stop(self) -> None:
        """Request shutdown.  An in-flight cycle is allowed to finish."""
        self._stopping.set()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run until ``stop()``.  Raises ObservationError if a source is lost."""
        if self._state == ControllerState.STOPPED:
            raise RuntimeError("controller already stopped")
        _logger.info("controller_starting", sources=[s.name for s in self._sources])
        tasks = [
            asyncio.create_task(self._run_source(source), name=f"source:{source.name}") for source in self._sources
        ]
        try:
            await self._drain()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._state = ControllerState.STOPPED
            controller_ready.set(0)
            _logger.info("controller_stopped", cycles=self._cycle)
        if self._fatal is not None:
            raise self._fatal

    async def _run_source(self, source: ObservationSource) -> None:
        try:
            await source.run(self._enqueue, self._stopping)
        except ObservationError as exc:
            self._fail(exc)
        except Exception as exc:  # noqa: BLE001
            self._fail(ObservationError(source.name, exc))

    def _fail(self, exc: ObservationError) -> None:
        _logger.error("observation_lost", source=exc.source, error=str(exc.cause))
        if self._fatal is None:
            self._fatal = exc
        self._stopping.set()

    async def _enqueue(self, item: RawEvent | SyncMarker) -> None:
        await self._queue.put(item)
        queue_depth.set(self._queue.qsize())

    async def _next(self, timeout: float | None) -> RawEvent | SyncMarker | None:
        """Next queued item, or None on timeout or shutdown."""
        if not self._queue.empty():
            return self._queue.get_nowait()
        getter = asyncio.ensure_future(self._queue.get())
        stopper = asyncio.ensure_future(self._stopping.wait())
        done, pending = await asyncio.wait({getter, stopper}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if getter in done:
            return getter.result()
        return None

    def _idle_timeout(self, batch: list[ResourceEvent]) -> float | None:
        if not self.is_ready():
            return None
        if batch:
            return self._config.batch_window
        return self._config.resync_period or None

    async def _drain(self) -> None:
        batch: list[ResourceEvent] = []
        if not self._sources:
            await self._become_ready(batch)
            batch = []

        while not self._stopping.is_set():
            item = await self._next(self._idle_timeout(batch))
            queue_depth.set(self._queue.qsize())
            if item is None:
                if self._stopping.is_set():
                    break
                if batch:
                    await self._reconcile(batch, "events")
                    batch = []
                elif self.is_ready():
                    await self._reconcile([], "resync")
                continue

            if isinstance(item, SyncMarker):
                self._synced.add(item.source)
                if not self.is_ready() and self._all_synced():
                    await self._become_ready(batch)
                    batch = []
                continue

            event = self._apply(item)
            if event is not None:
                batch.append(event)
            if not self.is_ready():
                continue
            if self._config.batch_window <= 0 or len(batch) >= self._config.max_batch:
                if batch:
                    await self._reconcile(batch, "events")
                    batch = []

    def _all_synced(self) -> bool:
        return all(source.name in self._synced for source in self._sources)

    async def _become_ready(self, batch: list[ResourceEvent]) -> None:
        self._state = ControllerState.READY
        controller_ready.set(1)
        _logger.info("controller_ready", objects=len(self._store), pending_events=len(batch))
        await self._reconcile(batch, "initial")

    # ------------------------------------------------------------------
    # Store mutation
    # ------------------------------------------------------------------

    def _apply(self, raw: RawEvent) -> ResourceEvent | None:
        """Apply *raw* to the Store.  Returns the resulting event, if any."""
        previous = self._store.get(raw.kind, raw.identity)
        if raw.new is None:
            if previous is None:
                return None
            self._store.delete(raw.kind, raw.identity)
            events_total.labels(kind=str(raw.kind), event_type=EventType.DELETE.value).inc()
            return ResourceEvent(raw.kind, EventType.DELETE, previous, None)

        try:
            obj = self._converter.from_document(raw.new)
        except ConversionError as exc:
            conversion_errors_total.labels(kind=str(raw.kind)).inc()
            _logger.warning("conversion_failed", kind=exc.kind, name=exc.name, reason=exc.reason)
            if previous is None:
                return None
            self._store.delete(raw.kind, raw.identity)
            return ResourceEvent(raw.kind, EventType.DELETE, previous, None)

        self._store.upsert(raw.kind, raw.identity, obj)
        event_type = EventType.CREATE if previous is None else EventType.UPDATE
        events_total.labels(kind=str(raw.kind), event_type=event_type.value).inc()
        return ResourceEvent(raw.kind, event_type, previous, obj)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _reconcile(self, batch: Sequence[ResourceEvent], trigger: str) -> None:
        self._cycle += 1
        self._state = ControllerState.RECONCILING
        bind_cycle(self._cycle)
        started = time.monotonic()
        try:
            try:
                topology = self._builder.build(self._store)
            except Exception:  # noqa: BLE001
                _logger.exception("topology_build_failed")
                return
            events = tuple(batch)
            ctx = ReconcileContext(cycle=self._cycle, client=self._client)
            for name, reconciler in self._reconcilers:
                try:
                    await invoke(reconciler, ctx, events, topology)
                except Exception:  # noqa: BLE001
                    reconciler_failures_total.labels(reconciler=name).inc()
                    _logger.exception("reconciler_failed", reconciler=name)
            _logger.debug("reconcile_complete", trigger=trigger, events=len(events))
        finally:
            reconcile_cycles_total.labels(trigger=trigger).inc()
            reconcile_duration_seconds.observe(time.monotonic() - started)
            self._state = ControllerState.READY
            unbind_cycle()
