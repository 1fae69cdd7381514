"""Integration tests for ResourceWatcher's list + watch loop.

A fake API serves scripted listings and watch streams, so relists, resumes
and retry budgets run without a cluster.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import MagicMock

import pytest
from factories import make_gateway

from kubepolicy.collector.source import ObservationError, RawEvent, SyncMarker
from kubepolicy.collector.watcher import GATEWAY_API_RESOURCES, ResourceExpired, ResourceType, ResourceWatcher

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_GATEWAYS = GATEWAY_API_RESOURCES[1]
_SERVICES = ResourceType("", "v1", "services", "Service")

Listing = tuple[list[dict[str, Any]], str]


def _doc(name: str, version: str) -> dict[str, Any]:
    doc = make_gateway(name)
    doc["metadata"]["resourceVersion"] = version
    return doc


class _FakeApi:
    """Pops scripted listings and streams; the last listing repeats, missing streams block.

    An exception inside a stream script is raised once the events before it are consumed.
    """

    def __init__(self, listings: list[Listing | Exception], streams: list[list[Any] | Exception]) -> None:
        self.listings = listings
        self.streams = streams
        self.list_calls = 0
        self.watch_versions: list[str] = []

    async def lister(self) -> Listing:
        self.list_calls += 1
        item = self.listings.pop(0) if len(self.listings) > 1 else self.listings[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def streamer(self, version: str) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        self.watch_versions.append(version)
        if not self.streams:
            await asyncio.Event().wait()
        script = self.streams.pop(0)
        if isinstance(script, Exception):
            raise script
        for event in script:
            if isinstance(event, Exception):
                raise event
            yield event


class _Collector:
    def __init__(self) -> None:
        self.items: list[RawEvent | SyncMarker] = []

    async def __call__(self, item: RawEvent | SyncMarker) -> None:
        self.items.append(item)

    def raw(self) -> list[tuple[str, str | None, str | None]]:
        """(name, old resourceVersion, new resourceVersion) per RawEvent."""
        return [
            (item.identity.rpartition("/")[2], _rv(item.old), _rv(item.new))
            for item in self.items
            if isinstance(item, RawEvent)
        ]


def _rv(doc: dict[str, Any] | None) -> str | None:
    return None if doc is None else doc["metadata"].get("resourceVersion")


def _watcher(api: _FakeApi, resource: ResourceType = _GATEWAYS, max_retries: int = 5) -> ResourceWatcher:
    return ResourceWatcher(resource, api.lister, api.streamer, max_retries=max_retries, backoff_base=0.001)


async def _eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@contextlib.asynccontextmanager
async def _running(watcher: ResourceWatcher, collector: _Collector) -> AsyncIterator[asyncio.Event]:
    stopping = asyncio.Event()
    task = asyncio.create_task(watcher.run(collector, stopping))
    try:
        yield stopping
    finally:
        stopping.set()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestInitialList:
    async def test_list_then_sync_marker(self) -> None:
        api = _FakeApi([([_doc("a", "1"), _doc("b", "2")], "10")], [])
        collector = _Collector()
        watcher = _watcher(api)
        async with _running(watcher, collector):
            await _eventually(lambda: api.watch_versions == ["10"])
        assert collector.raw() == [("a", None, "1"), ("b", None, "2")]
        assert collector.items[-1] == SyncMarker("gateways.gateway.networking.k8s.io")
        assert watcher.has_synced()

    async def test_core_items_are_completed(self) -> None:
        service = {"metadata": {"name": "my-service", "namespace": "my-namespace"}, "spec": {}}
        api = _FakeApi([([service], "1")], [])
        collector = _Collector()
        watcher = _watcher(api, _SERVICES)
        async with _running(watcher, collector):
            await _eventually(lambda: bool(api.watch_versions))
        event = collector.items[0]
        assert isinstance(event, RawEvent)
        assert event.new is not None
        assert (event.new["apiVersion"], event.new["kind"]) == ("v1", "Service")
        assert watcher.name == "services.core"

    def test_unsupported_core_kind(self) -> None:
        with pytest.raises(ValueError, match="Unsupported core resource"):
            ResourceWatcher.for_kubernetes(ResourceType("", "v1", "configmaps", "ConfigMap"), MagicMock())


# ---------------------------------------------------------------------------
# Watch stream
# ---------------------------------------------------------------------------


class TestWatchStream:
    async def test_added_modified_deleted(self) -> None:
        stream = [
            ("ADDED", _doc("b", "11")),
            ("MODIFIED", _doc("a", "12")),
            ("DELETED", _doc("b", "13")),
            ("UNKNOWN", _doc("c", "14")),
        ]
        api = _FakeApi([([_doc("a", "1")], "10")], [stream])
        collector = _Collector()
        async with _running(_watcher(api), collector):
            await _eventually(lambda: len(api.watch_versions) == 2)
        assert collector.raw() == [
            ("a", None, "1"),
            ("b", None, "11"),
            ("a", "1", "12"),
            ("b", "11", None),
        ]

    async def test_stream_resumes_from_last_version(self) -> None:
        streams: list[Any] = [
            [("BOOKMARK", {"metadata": {"resourceVersion": "7"}}), ("MODIFIED", _doc("a", "8"))],
            [("BOOKMARK", {"metadata": {"resourceVersion": "9"}})],
        ]
        api = _FakeApi([([_doc("a", "1")], "5")], streams)
        collector = _Collector()
        async with _running(_watcher(api), collector):
            await _eventually(lambda: len(api.watch_versions) == 3)
        assert api.watch_versions == ["5", "8", "9"]
        assert api.list_calls == 1
        assert collector.raw() == [("a", None, "1"), ("a", "1", "8")]

    async def test_expired_error_event_relists_with_diff(self) -> None:
        listings: list[Any] = [
            ([_doc("a", "1"), _doc("b", "2")], "10"),
            ([_doc("a", "3"), _doc("c", "4")], "20"),
        ]
        stream = [("ADDED", _doc("d", "11")), ("ERROR", {"code": 410, "message": "too old resource version"})]
        api = _FakeApi(listings, [stream])
        collector = _Collector()
        async with _running(_watcher(api), collector):
            await _eventually(lambda: api.watch_versions == ["10", "20"])
        assert collector.raw() == [
            ("a", None, "1"),
            ("b", None, "2"),
            ("d", None, "11"),
            ("a", "1", "3"),
            ("c", None, "4"),
            ("b", "2", None),
            ("d", "11", None),
        ]
        assert sum(isinstance(item, SyncMarker) for item in collector.items) == 1

    async def test_expired_exception_relists(self) -> None:
        api = _FakeApi([([_doc("a", "1")], "10"), ([_doc("a", "1")], "30")], [ResourceExpired("gone")])
        collector = _Collector()
        async with _running(_watcher(api), collector):
            await _eventually(lambda: api.watch_versions == ["10", "30"])
        assert api.list_calls == 2
        assert collector.raw() == [("a", None, "1")]

    async def test_returns_immediately_when_stopping(self) -> None:
        api = _FakeApi([([], "1")], [])
        collector = _Collector()
        stopping = asyncio.Event()
        stopping.set()
        await asyncio.wait_for(_watcher(api).run(collector, stopping), 1.0)
        assert collector.items == []
        assert api.list_calls == 0


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


class TestRetries:
    async def test_retry_budget_exhausted(self) -> None:
        api = _FakeApi([RuntimeError("apiserver down")], [])
        watcher = _watcher(api, max_retries=2)
        with pytest.raises(ObservationError) as info:
            await asyncio.wait_for(watcher.run(_Collector(), asyncio.Event()), 2.0)
        assert api.list_calls == 3
        assert info.value.source == "gateways.gateway.networking.k8s.io"
        assert isinstance(info.value.cause, RuntimeError)

    async def test_watch_error_event_triggers_relist(self) -> None:
        api = _FakeApi([([_doc("a", "1")], "1")], [[("ERROR", {"code": 500, "message": "internal"})]])
        collector = _Collector()
        async with _running(_watcher(api), collector):
            await _eventually(lambda: len(api.watch_versions) == 2)
        assert api.list_calls == 2
        assert collector.raw() == [("a", None, "1")]

    async def test_watch_that_always_fails_is_fatal(self) -> None:
        api = _FakeApi([([_doc("a", "1")], "1")], [RuntimeError("forbidden") for _ in range(50)])
        watcher = _watcher(api, max_retries=2)
        with pytest.raises(ObservationError) as info:
            await asyncio.wait_for(watcher.run(_Collector(), asyncio.Event()), 2.0)
        assert api.list_calls == 3
        assert len(api.watch_versions) == 3
        assert str(info.value.cause) == "forbidden"

    async def test_stream_progress_resets_the_budget(self) -> None:
        streams: list[Any] = [[("MODIFIED", _doc("a", str(v))), RuntimeError("reset")] for v in (2, 3, 4)]
        api = _FakeApi([([_doc("a", "1")], "1")], streams)
        collector = _Collector()
        async with _running(_watcher(api, max_retries=1), collector):
            await _eventually(lambda: len(api.watch_versions) == 4)
        assert api.list_calls == 4
        assert ("a", "1", "2") in collector.raw()
        assert sum(isinstance(item, SyncMarker) for item in collector.items) == 1

    async def test_failed_relists_count_against_the_budget(self) -> None:
        listings: list[Any] = [([_doc("a", "1")], "1"), RuntimeError("down")]
        api = _FakeApi(listings, [[("MODIFIED", _doc("a", "2")), RuntimeError("reset")]])
        watcher = _watcher(api, max_retries=2)
        with pytest.raises(ObservationError):
            await asyncio.wait_for(watcher.run(_Collector(), asyncio.Event()), 2.0)
        assert api.list_calls == 3
        assert len(api.watch_versions) == 1
