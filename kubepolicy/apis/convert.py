"""Two-way mapping between schemaless documents and typed objects.

Used at the Store boundary: watch events carry plain dicts, the topology works
on typed resources and policies.  A document that does not fit its registered
type raises ConversionError; nothing is coerced into a shape it does not have.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from kubepolicy.apis import core, gateway
from kubepolicy.apis.meta import UnstructuredResource
from kubepolicy.machinery.objects import GroupKind
from kubepolicy.machinery.policies import BackendTLSPolicy, PolicyKind

Factory = Callable[[Mapping[str, Any]], Any]


class ConversionError(Exception):
    """Raised when a document cannot be mapped to its typed representation."""

    def __init__(self, kind: str, name: str, reason: str) -> None:
        super().__init__(f"cannot convert {kind} {name!r}: {reason}")
        self.kind = kind
        self.name = name
        self.reason = reason


def group_kind_of(doc: Mapping[str, Any]) -> GroupKind:
    """Return the group kind declared by *doc*.  Raises ConversionError if missing."""
    api_version = doc.get("apiVersion")
    kind = doc.get("kind")
    if not isinstance(api_version, str) or not api_version or not isinstance(kind, str) or not kind:
        raise ConversionError(str(kind or "<unknown>"), _doc_name(doc), "missing apiVersion or kind")
    group, _, _version = api_version.rpartition("/")
    return GroupKind(group=group, kind=kind)


def _doc_name(doc: Mapping[str, Any]) -> str:
    metadata = doc.get("metadata")
    if isinstance(metadata, Mapping):
        return str(metadata.get("name", ""))
    return ""


def _model_factory(model: type[BaseModel]) -> Factory:
    return model.model_validate


_DEFAULT_FACTORIES: dict[GroupKind, Factory] = {
    gateway.GATEWAY_CLASS: _model_factory(gateway.GatewayClass),
    gateway.GATEWAY: _model_factory(gateway.Gateway),
    gateway.HTTP_ROUTE: _model_factory(gateway.HTTPRoute),
    gateway.GRPC_ROUTE: _model_factory(gateway.GRPCRoute),
    gateway.TCP_ROUTE: _model_factory(gateway.TCPRoute),
    gateway.REFERENCE_GRANT: _model_factory(gateway.ReferenceGrant),
    gateway.BACKEND_TLS_POLICY: _model_factory(BackendTLSPolicy),
    core.SERVICE: _model_factory(core.Service),
}


class Converter:
    """Registry of typed factories keyed by group kind.

    Kinds without a registered factory become ``UnstructuredResource``.
    """

    def __init__(self, policy_kinds: Iterable[PolicyKind] = ()) -> None:
        self._factories: dict[GroupKind, Factory] = dict(_DEFAULT_FACTORIES)
        for policy_kind in policy_kinds:
            self.register(policy_kind.group_kind, policy_kind.from_document)

    def register(self, kind: GroupKind, factory: Factory) -> None:
        self._factories[kind] = factory

    def from_document(self, doc: Mapping[str, Any]) -> Any:
        """Convert *doc* into its typed object."""
        if not isinstance(doc, Mapping):
            raise ConversionError("<unknown>", "", f"expected a mapping, got {type(doc).__name__}")
        kind = group_kind_of(doc)
        name = _doc_name(doc)
        if not name:
            raise ConversionError(str(kind), name, "missing metadata.name")
        factory = self._factories.get(kind, UnstructuredResource.model_validate)
        try:
            return factory(doc)
        except ValidationError as exc:
            raise ConversionError(str(kind), name, _summarise(exc)) from exc

    @staticmethod
    def to_document(obj: Any) -> dict[str, Any]:
        """Convert a typed object back into its camelCase document form."""
        resource = getattr(obj, "resource", obj)
        if not isinstance(resource, BaseModel):
            raise ConversionError(type(obj).__name__, getattr(obj, "name", ""), "not backed by a resource model")
        return resource.model_dump(by_alias=True, exclude_none=True, mode="json")


def _summarise(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    more = f" (+{len(errors) - 1} more)" if len(errors) > 1 else ""
    return f"{loc}: {first.get('msg', '')}{more}"
