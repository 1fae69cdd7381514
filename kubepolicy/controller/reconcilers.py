"""Reconciler composition: event subscriptions and workflows."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field

from kubepolicy.controller.controller import ReconcileContext, Reconciler, invoke
from kubepolicy.graph import Topology
from kubepolicy.machinery.objects import GroupKind
from kubepolicy.models.events import EventType, ResourceEvent


@dataclass(frozen=True)
class EventMatcher:
    """Matches events by kind, type, namespace and name.  ``None`` matches anything."""

    kind: GroupKind | None = None
    event_type: EventType | None = None
    namespace: str | None = None
    name: str | None = None

    def matches(self, event: ResourceEvent) -> bool:
        if self.kind is not None and event.kind != self.kind:
            return False
        if self.event_type is not None and event.event_type != self.event_type:
            return False
        obj = event.object
        if self.namespace is not None and getattr(obj, "namespace", None) != self.namespace:
            return False
        if self.name is not None and getattr(obj, "name", None) != self.name:
            return False
        return True


@dataclass
class Subscription:
    """Runs *reconcile* only for batches containing a matching event.

    Empty batches (initial sync without changes, periodic resync) always pass,
    as does a subscription without matchers.
    """

    reconcile: Reconciler
    events: Sequence[EventMatcher] = ()
    name: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            self.name = getattr(self.reconcile, "__name__", type(self.reconcile).__name__)

    def wants(self, events: Sequence[ResourceEvent]) -> bool:
        if not events or not self.events:
            return True
        return any(matcher.matches(event) for event in events for matcher in self.events)

    async def __call__(self, ctx: ReconcileContext, events: Sequence[ResourceEvent], topology: Topology) -> None:
        if self.wants(events):
            await invoke(self.reconcile, ctx, events, topology)


@dataclass
class Workflow:
    """Precondition, then every task concurrently, then postcondition.

    All steps share ``ctx.values``.  A failing precondition skips the tasks; a
    failing task cancels its siblings and surfaces as an ExceptionGroup.
    """

    precondition: Reconciler | None = None
    tasks: Sequence[Reconciler] = field(default_factory=list)
    postcondition: Reconciler | None = None
    name: str = "workflow"

    async def __call__(self, ctx: ReconcileContext, events: Sequence[ResourceEvent], topology: Topology) -> None:
        if self.precondition is not None:
            await invoke(self.precondition, ctx, events, topology)
        if self.tasks:
            async with asyncio.TaskGroup() as group:
                for task in self.tasks:
                    group.create_task(invoke(task, ctx, events, topology))
        if self.postcondition is not None:
            await invoke(self.postcondition, ctx, events, topology)
