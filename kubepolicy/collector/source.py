"""Observation source contract and the polling implementation.

A source observes one resource kind.  It first lists the current state, emits
one RawEvent per object followed by a SyncMarker, then keeps emitting change
notifications until the controller sets ``stopping``.  Delivery is
at-least-once and ordered per identity.

Sources only push into the controller's queue; they never touch the Store.
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from kubepolicy.machinery.objects import GroupKind
from kubepolicy.observability.logging import get_logger

_logger = get_logger("collector")

Document = Mapping[str, Any]


class ObservationError(Exception):
    """A source lost its observation stream and exhausted its retry budget.

    Fatal to the controller: ``Controller.run()`` re-raises it.
    """

    def __init__(self, source: str, cause: BaseException | str) -> None:
        super().__init__(f"observation source {source!r} failed: {cause}")
        self.source = source
        self.cause = cause


@dataclass(frozen=True)
class RawEvent:
    """An unconverted change notification: ``old`` is None on add, ``new`` on delete."""

    kind: GroupKind
    identity: str
    old: Document | None
    new: Document | None


@dataclass(frozen=True)
class SyncMarker:
    """Emitted once by a source after its initial listing has been delivered."""

    source: str


Emit = Callable[[RawEvent | SyncMarker], Awaitable[None]]


def document_identity(doc: Document) -> str:
    """Identity of a document within its kind: the UID, else ``namespace/name``."""
    metadata = doc.get("metadata") or {}
    uid = metadata.get("uid")
    if uid:
        return str(uid)
    namespace = metadata.get("namespace") or ""
    name = metadata.get("name") or ""
    return f"{namespace}/{name}" if namespace else str(name)


def _version(doc: Document) -> Any:
    metadata = doc.get("metadata") or {}
    return metadata.get("resourceVersion") or doc


def diff_listings(kind: GroupKind, previous: Mapping[str, Document], current: Mapping[str, Document]) -> list[RawEvent]:
    """Events turning listing *previous* into listing *current*.

    Additions and updates come first in *current* order, then deletions.  An
    object counts as updated when its resourceVersion (or, lacking one, its
    content) changed.
    """
    events = []
    for identity, doc in current.items():
        old = previous.get(identity)
        if old is None:
            events.append(RawEvent(kind, identity, None, doc))
        elif _version(old) != _version(doc):
            events.append(RawEvent(kind, identity, old, doc))
    for identity, old in previous.items():
        if identity not in current:
            events.append(RawEvent(kind, identity, old, None))
    return events


def backoff_delay(attempt: int, base: float = 1.0, maximum: float = 30.0) -> float:
    """Exponential back-off for the *attempt*-th consecutive failure (1-based)."""
    return min(base * 2 ** max(attempt - 1, 0), maximum)


async def wait_or_stop(stopping: asyncio.Event, timeout: float) -> None:
    """Sleep for *timeout* seconds, returning early once *stopping* is set."""
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(stopping.wait(), timeout)


class ObservationSource(ABC):
    """Observes one resource kind and pushes its changes to the controller."""

    def __init__(self, kind: GroupKind, name: str | None = None) -> None:
        self.kind = kind
        self.name = name or str(kind)
        self._synced = False

    def has_synced(self) -> bool:
        return self._synced

    async def _mark_synced(self, emit: Emit) -> None:
        if self._synced:
            return
        self._synced = True
        _logger.info("source_synced", source=self.name)
        await emit(SyncMarker(self.name))

    @abstractmethod
    async def run(self, emit: Emit, stopping: asyncio.Event) -> None:
        """Observe until *stopping* is set.  Raises ObservationError when observation is lost."""


Lister = Callable[[], Awaitable[list[dict[str, Any]]]]


class PollingSource(ObservationSource):
    """Lists the kind every *interval* seconds and emits the difference.

    No watch stream is needed; deletions are detected by absence.
    """

    def __init__(
        self,
        kind: GroupKind,
        lister: Lister,
        *,
        interval: float = 30.0,
        max_retries: int = 5,
        backoff_base: float = 1.0,
        name: str | None = None,
    ) -> None:
        super().__init__(kind, name)
        self._lister = lister
        self._interval = interval
        self._max_retries = max_retries
        self._backoff_base = backoff_base

    async def run(self, emit: Emit, stopping: asyncio.Event) -> None:
        known: dict[str, Document] = {}
        failures = 0
        while not stopping.is_set():
            try:
                docs = await self._lister()
            except Exception as exc:  # noqa: BLE001
                failures += 1
                if failures > self._max_retries:
                    raise ObservationError(self.name, exc) from exc
                delay = backoff_delay(failures, self._backoff_base)
                _logger.warning("list_failed", source=self.name, attempt=failures, retry_in=delay, error=str(exc))
                await wait_or_stop(stopping, delay)
                continue

            failures = 0
            current = {document_identity(doc): doc for doc in docs}
            for event in diff_listings(self.kind, known, current):
                await emit(event)
            known = current
            await self._mark_synced(emit)
            await wait_or_stop(stopping, self._interval)
