"""ResourceWatcher: list + watch one kind with relist and back-off.

The watch loop is written against two small callables so it can run without a
cluster:

    lister()            -> (items, resourceVersion)
    streamer(version)   -> async iterator of (event type, raw document)

``ResourceWatcher.for_kubernetes`` builds both from kubernetes_asyncio.  A
stream that ends normally (server-side timeout) is resumed from the last seen
resourceVersion; an expired version (HTTP 410) triggers a full relist, which
is diffed against what was already emitted so no change is lost or repeated.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from kubepolicy.collector.source import (
    Document,
    Emit,
    ObservationError,
    ObservationSource,
    RawEvent,
    backoff_delay,
    diff_listings,
    document_identity,
    wait_or_stop,
)
from kubepolicy.machinery.objects import GroupKind
from kubepolicy.observability.logging import get_logger

_logger = get_logger("collector.watcher")

WatchLister = Callable[[], Awaitable[tuple[list[dict[str, Any]], str]]]
WatchStreamer = Callable[[str], AsyncIterator[tuple[str, dict[str, Any]]]]

_WATCH_TIMEOUT_SECONDS = 300

# Core kinds are listed through CoreV1Api; everything else through CustomObjectsApi.
_CORE_LISTERS: dict[str, tuple[str, str]] = {
    "services": ("list_service_for_all_namespaces", "list_namespaced_service"),
}


class ResourceExpired(Exception):
    """The watch resourceVersion is too old; the kind must be relisted."""


@dataclass(frozen=True)
class ResourceType:
    """Group, version, plural and kind of a watched resource."""

    group: str
    version: str
    plural: str
    kind: str
    namespaced: bool = True

    @property
    def group_kind(self) -> GroupKind:
        return GroupKind(self.group, self.kind)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version


GATEWAY_API_RESOURCES: tuple[ResourceType, ...] = (
    ResourceType("gateway.networking.k8s.io", "v1", "gatewayclasses", "GatewayClass", namespaced=False),
    ResourceType("gateway.networking.k8s.io", "v1", "gateways", "Gateway"),
    ResourceType("gateway.networking.k8s.io", "v1", "httproutes", "HTTPRoute"),
    ResourceType("gateway.networking.k8s.io", "v1", "grpcroutes", "GRPCRoute"),
    ResourceType("gateway.networking.k8s.io", "v1alpha2", "tcproutes", "TCPRoute"),
    ResourceType("gateway.networking.k8s.io", "v1beta1", "referencegrants", "ReferenceGrant"),
    ResourceType("", "v1", "services", "Service"),
)

BACKEND_TLS_POLICY_RESOURCE = ResourceType(
    "gateway.networking.k8s.io", "v1alpha3", "backendtlspolicies", "BackendTLSPolicy"
)


class ResourceWatcher(ObservationSource):
    """Observes one resource type through list + watch."""

    def __init__(
        self,
        resource: ResourceType,
        lister: WatchLister,
        streamer: WatchStreamer,
        *,
        max_retries: int = 5,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
    ) -> None:
        super().__init__(resource.group_kind, name=f"{resource.plural}.{resource.group or 'core'}")
        self.resource = resource
        self._lister = lister
        self._streamer = streamer
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._known: dict[str, Document] = {}
        # set once the current watch stream has delivered an event
        self._streamed = False

    @classmethod
    def for_kubernetes(
        cls,
        resource: ResourceType,
        api_client: Any,
        *,
        namespace: str = "",
        label_selector: str = "",
        field_selector: str = "",
        max_retries: int = 5,
    ) -> ResourceWatcher:
        """Watcher backed by a kubernetes_asyncio ``ApiClient``."""
        from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

        if resource.group:
            custom = k8s_client.CustomObjectsApi(api_client)
            if namespace and resource.namespaced:
                func = custom.list_namespaced_custom_object
                args: tuple[Any, ...] = (resource.group, resource.version, namespace, resource.plural)
            else:
                func = custom.list_cluster_custom_object
                args = (resource.group, resource.version, resource.plural)
        else:
            if resource.plural not in _CORE_LISTERS:
                raise ValueError(f"Unsupported core resource: {resource.plural}")
            all_namespaces, namespaced = _CORE_LISTERS[resource.plural]
            core = k8s_client.CoreV1Api(api_client)
            func = getattr(core, namespaced if namespace else all_namespaces)
            args = (namespace,) if namespace else ()

        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector

        async def lister() -> tuple[list[dict[str, Any]], str]:
            result = await func(*args, **kwargs)
            if not isinstance(result, dict):
                result = api_client.sanitize_for_serialization(result)
            metadata = result.get("metadata") or {}
            return list(result.get("items") or []), str(metadata.get("resourceVersion") or "")

        async def streamer(version: str) -> AsyncIterator[tuple[str, dict[str, Any]]]:
            from kubernetes_asyncio import watch  # type: ignore[import-untyped]
            from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

            async with watch.Watch() as stream:
                try:
                    async for event in stream.stream(
                        func,
                        *args,
                        resource_version=version,
                        timeout_seconds=_WATCH_TIMEOUT_SECONDS,
                        **kwargs,
                    ):
                        yield event["type"], event["raw_object"]
                except ApiException as exc:
                    if exc.status == 410:
                        raise ResourceExpired(str(exc)) from exc
                    raise

        return cls(resource, lister, streamer, max_retries=max_retries)

    # ------------------------------------------------------------------
    # Watch loop
    # ------------------------------------------------------------------

    async def run(self, emit: Emit, stopping: asyncio.Event) -> None:
        failures = 0
        while not stopping.is_set():
            self._streamed = False
            try:
                version = await self._relist(emit)
                while not stopping.is_set():
                    version = await self._watch(emit, stopping, version)
                    failures = 0
            except ResourceExpired:
                _logger.info("watch_expired", source=self.name)
            except Exception as exc:  # noqa: BLE001
                if self._streamed:
                    failures = 0
                failures += 1
                if failures > self._max_retries:
                    _logger.error("watch_failed", source=self.name, attempts=failures, error=str(exc))
                    raise ObservationError(self.name, exc) from exc
                delay = backoff_delay(failures, self._backoff_base, self._backoff_max)
                _logger.warning("watch_retry", source=self.name, attempt=failures, retry_in=delay, error=str(exc))
                await wait_or_stop(stopping, delay)

    async def _relist(self, emit: Emit) -> str:
        items, version = await self._lister()
        current = {}
        for item in items:
            doc = self._complete(item)
            current[document_identity(doc)] = doc
        for event in diff_listings(self.kind, self._known, current):
            await emit(event)
        self._known = current
        _logger.debug("source_listed", source=self.name, objects=len(current), resource_version=version)
        await self._mark_synced(emit)
        return version

    async def _watch(self, emit: Emit, stopping: asyncio.Event, version: str) -> str:
        """Consume one watch stream.  Returns the last resourceVersion seen."""
        async for event_type, raw in self._streamer(version):
            if stopping.is_set():
                break
            if event_type == "ERROR":
                if raw.get("code") == 410:
                    raise ResourceExpired(str(raw.get("message", "")))
                raise RuntimeError(f"watch error: {raw.get('message', raw)}")
            self._streamed = True
            metadata = raw.get("metadata") or {}
            version = str(metadata.get("resourceVersion") or version)
            if event_type == "BOOKMARK":
                continue
            doc = self._complete(raw)
            identity = document_identity(doc)
            if event_type == "DELETED":
                old = self._known.pop(identity, doc)
                await emit(RawEvent(self.kind, identity, old, None))
            elif event_type in ("ADDED", "MODIFIED"):
                old = self._known.get(identity)
                self._known[identity] = doc
                await emit(RawEvent(self.kind, identity, old, doc))
            else:
                _logger.debug("watch_event_ignored", source=self.name, event_type=event_type)
        return version

    def _complete(self, doc: dict[str, Any]) -> dict[str, Any]:
        """List items of core kinds carry no apiVersion/kind; fill them in."""
        if doc.get("apiVersion") and doc.get("kind"):
            return doc
        return {**doc, "apiVersion": self.resource.api_version, "kind": self.resource.kind}
