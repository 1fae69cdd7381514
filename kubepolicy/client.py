"""Write access to the cluster for reconcilers.

The controller never writes; reconcilers express desired changes through this
client and observe the result as a later watch event.  Failures are raised as
ExternalWriteError and never retried here: the next event or periodic resync
is the retry.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from kubepolicy.apis.convert import Converter
from kubepolicy.collector.watcher import ResourceType
from kubepolicy.observability.logging import get_logger

_logger = get_logger("client")

# plural -> (create, replace, delete, replace_status) on CoreV1Api; all namespaced.
_CORE_WRITERS: dict[str, tuple[str, str, str, str]] = {
    "services": (
        "create_namespaced_service",
        "replace_namespaced_service",
        "delete_namespaced_service",
        "replace_namespaced_service_status",
    ),
}


class ExternalWriteError(Exception):
    """A create/update/delete/status write against the cluster failed."""

    def __init__(self, operation: str, resource: ResourceType, name: str, namespace: str, cause: BaseException) -> None:
        target = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{operation} {resource.plural}.{resource.group or 'core'} {target} failed: {cause}")
        self.operation = operation
        self.resource = resource
        self.name = name
        self.namespace = namespace
        self.cause = cause
        self.status = getattr(cause, "status", None)


def _identity(body: Mapping[str, Any]) -> tuple[str, str]:
    metadata = body.get("metadata") or {}
    return str(metadata.get("name") or ""), str(metadata.get("namespace") or "")


class ResourceClient:
    """create / update / delete / update_status over kubernetes_asyncio.

    Bodies may be plain documents or typed resources (converted with
    ``Converter.to_document``).
    """

    def __init__(self, api_client: Any = None, *, custom_api: Any = None, core_api: Any = None) -> None:
        self._api_client = api_client
        self._custom_api = custom_api
        self._core_api = core_api

    def _custom(self) -> Any:
        if self._custom_api is None:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            self._custom_api = k8s_client.CustomObjectsApi(self._api_client)
        return self._custom_api

    def _core(self) -> Any:
        if self._core_api is None:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            self._core_api = k8s_client.CoreV1Api(self._api_client)
        return self._core_api

    def _core_writer(self, resource: ResourceType, index: int) -> Callable[..., Awaitable[Any]]:
        if resource.plural not in _CORE_WRITERS:
            raise ValueError(f"Unsupported core resource: {resource.plural}")
        return getattr(self._core(), _CORE_WRITERS[resource.plural][index])

    async def create(self, resource: ResourceType, body: Any) -> dict[str, Any]:
        doc = self._document(body)
        name, namespace = _identity(doc)
        if not resource.group:
            call = self._core_writer(resource, 0)(namespace, doc)
        elif namespace:
            call = self._custom().create_namespaced_custom_object(
                resource.group, resource.version, namespace, resource.plural, doc
            )
        else:
            call = self._custom().create_cluster_custom_object(resource.group, resource.version, resource.plural, doc)
        return await self._write("create", resource, name, namespace, call)

    async def update(self, resource: ResourceType, body: Any) -> dict[str, Any]:
        """Replace the spec (and metadata) of an existing object."""
        doc = self._document(body)
        name, namespace = _identity(doc)
        if not resource.group:
            call = self._core_writer(resource, 1)(name, namespace, doc)
        elif namespace:
            call = self._custom().replace_namespaced_custom_object(
                resource.group, resource.version, namespace, resource.plural, name, doc
            )
        else:
            call = self._custom().replace_cluster_custom_object(
                resource.group, resource.version, resource.plural, name, doc
            )
        return await self._write("update", resource, name, namespace, call)

    async def delete(self, resource: ResourceType, name: str, namespace: str = "") -> dict[str, Any]:
        if not resource.group:
            call = self._core_writer(resource, 2)(name, namespace)
        elif namespace:
            call = self._custom().delete_namespaced_custom_object(
                resource.group, resource.version, namespace, resource.plural, name
            )
        else:
            call = self._custom().delete_cluster_custom_object(resource.group, resource.version, resource.plural, name)
        return await self._write("delete", resource, name, namespace, call)

    async def update_status(self, resource: ResourceType, body: Any) -> dict[str, Any]:
        """Write the status sub-resource only."""
        doc = self._document(body)
        name, namespace = _identity(doc)
        if not resource.group:
            call = self._core_writer(resource, 3)(name, namespace, doc)
        elif namespace:
            call = self._custom().replace_namespaced_custom_object_status(
                resource.group, resource.version, namespace, resource.plural, name, doc
            )
        else:
            call = self._custom().replace_cluster_custom_object_status(
                resource.group, resource.version, resource.plural, name, doc
            )
        return await self._write("update_status", resource, name, namespace, call)

    @staticmethod
    def _document(body: Any) -> dict[str, Any]:
        if isinstance(body, Mapping):
            return dict(body)
        return Converter.to_document(body)

    async def _write(
        self, operation: str, resource: ResourceType, name: str, namespace: str, call: Awaitable[Any]
    ) -> dict[str, Any]:
        try:
            result = await call
        except Exception as exc:
            _logger.warning(
                "external_write_failed",
                operation=operation,
                kind=resource.kind,
                name=name,
                namespace=namespace,
                error=str(exc),
            )
            raise ExternalWriteError(operation, resource, name, namespace, exc) from exc
        _logger.debug("external_write", operation=operation, kind=resource.kind, name=name, namespace=namespace)
        if isinstance(result, dict):
            return result
        if result is not None and self._api_client is not None:
            return self._api_client.sanitize_for_serialization(result)
        return {}
