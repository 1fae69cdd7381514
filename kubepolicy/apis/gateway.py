"""Gateway API resource models (gateway.networking.k8s.io).

Only the fields the topology needs are typed; everything else round-trips
through ``extra="allow"``.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from kubepolicy.apis.meta import KubeModel, Resource
from kubepolicy.machinery.objects import GroupKind

GROUP = "gateway.networking.k8s.io"

GATEWAY_CLASS = GroupKind(GROUP, "GatewayClass")
GATEWAY = GroupKind(GROUP, "Gateway")
LISTENER = GroupKind(GROUP, "Listener")
HTTP_ROUTE = GroupKind(GROUP, "HTTPRoute")
HTTP_ROUTE_RULE = GroupKind(GROUP, "HTTPRouteRule")
GRPC_ROUTE = GroupKind(GROUP, "GRPCRoute")
GRPC_ROUTE_RULE = GroupKind(GROUP, "GRPCRouteRule")
TCP_ROUTE = GroupKind(GROUP, "TCPRoute")
TCP_ROUTE_RULE = GroupKind(GROUP, "TCPRouteRule")
REFERENCE_GRANT = GroupKind(GROUP, "ReferenceGrant")
BACKEND_TLS_POLICY = GroupKind(GROUP, "BackendTLSPolicy")


class ParentReference(KubeModel):
    group: str = GROUP
    kind: str = "Gateway"
    namespace: str | None = None
    name: str
    section_name: str | None = None
    port: int | None = None


class BackendRef(KubeModel):
    group: str = ""
    kind: str = "Service"
    namespace: str | None = None
    name: str
    port: int | None = None
    weight: int | None = None


class Listener(KubeModel):
    name: str
    hostname: str | None = None
    port: int
    protocol: str
    allowed_routes: dict[str, Any] | None = None


class GatewayClassSpec(KubeModel):
    controller_name: str


class GatewaySpec(KubeModel):
    gateway_class_name: str
    listeners: list[Listener] = Field(default_factory=list)


class RouteRule(KubeModel):
    name: str | None = None
    backend_refs: list[BackendRef] = Field(default_factory=list)


class HTTPRouteRule(RouteRule):
    matches: list[dict[str, Any]] = Field(default_factory=list)
    filters: list[dict[str, Any]] = Field(default_factory=list)


class GRPCRouteRule(RouteRule):
    matches: list[dict[str, Any]] = Field(default_factory=list)
    filters: list[dict[str, Any]] = Field(default_factory=list)


class TCPRouteRule(RouteRule):
    pass


class HTTPRouteSpec(KubeModel):
    parent_refs: list[ParentReference] = Field(default_factory=list)
    hostnames: list[str] = Field(default_factory=list)
    rules: list[HTTPRouteRule] = Field(default_factory=list)


class GRPCRouteSpec(KubeModel):
    parent_refs: list[ParentReference] = Field(default_factory=list)
    hostnames: list[str] = Field(default_factory=list)
    rules: list[GRPCRouteRule] = Field(default_factory=list)


class TCPRouteSpec(KubeModel):
    parent_refs: list[ParentReference] = Field(default_factory=list)
    rules: list[TCPRouteRule] = Field(default_factory=list)


class GatewayClass(Resource):
    spec: GatewayClassSpec


class Gateway(Resource):
    spec: GatewaySpec


class HTTPRoute(Resource):
    spec: HTTPRouteSpec = Field(default_factory=HTTPRouteSpec)


class GRPCRoute(Resource):
    spec: GRPCRouteSpec = Field(default_factory=GRPCRouteSpec)


class TCPRoute(Resource):
    spec: TCPRouteSpec = Field(default_factory=TCPRouteSpec)


class ReferenceGrantFrom(KubeModel):
    group: str
    kind: str
    namespace: str


class ReferenceGrantTo(KubeModel):
    group: str
    kind: str
    name: str | None = None


class ReferenceGrantSpec(KubeModel):
    from_: list[ReferenceGrantFrom] = Field(default_factory=list, alias="from")
    to: list[ReferenceGrantTo] = Field(default_factory=list)


class ReferenceGrant(Resource):
    spec: ReferenceGrantSpec = Field(default_factory=ReferenceGrantSpec)

    def permits(self, from_kind: GroupKind, from_namespace: str, to_kind: GroupKind, to_name: str) -> bool:
        """Whether this grant lets *from_kind* in *from_namespace* reference the named *to_kind*."""
        allowed_from = any(
            f.group == from_kind.group and f.kind == from_kind.kind and f.namespace == from_namespace
            for f in self.spec.from_
        )
        if not allowed_from:
            return False
        return any(
            t.group == to_kind.group and t.kind == to_kind.kind and t.name in (None, "", to_name)
            for t in self.spec.to
        )


class LocalPolicyTargetReferenceSpec(KubeModel):
    group: str = ""
    kind: str
    name: str
    section_name: str | None = None


class BackendTLSPolicySpec(KubeModel):
    target_refs: list[LocalPolicyTargetReferenceSpec] = Field(default_factory=list)
    validation: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, str] = Field(default_factory=dict)
