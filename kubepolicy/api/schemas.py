"""Response models for the REST API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from kubepolicy.graph import Topology
from kubepolicy.machinery.objects import Object, Policy, Targetable


class ErrorResponse(BaseModel):
    """Error envelope returned by every failing endpoint."""

    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str


class ReadyResponse(BaseModel):
    ready: bool
    state: str
    cycles: int


class NodeSchema(BaseModel):
    locator: str
    group: str
    kind: str
    namespace: str
    name: str
    policies: list[str] = Field(default_factory=list)

    @classmethod
    def from_object(cls, node: Object) -> NodeSchema:
        policies = [p.locator for p in node.policies()] if isinstance(node, Targetable) else []
        return cls(
            locator=node.locator,
            group=node.group_kind.group,
            kind=node.group_kind.kind,
            namespace=node.namespace,
            name=node.name,
            policies=policies,
        )


class PolicySchema(BaseModel):
    locator: str
    group: str
    kind: str
    namespace: str
    name: str
    targets: list[str]

    @classmethod
    def from_policy(cls, policy: Policy, topology: Topology) -> PolicySchema:
        return cls(
            locator=policy.locator,
            group=policy.group_kind.group,
            kind=policy.group_kind.kind,
            namespace=policy.namespace,
            name=policy.name,
            targets=[t.locator for t in topology.targetables().children(policy)],
        )


class EdgeSchema(BaseModel):
    source: str
    target: str
    type: str


class TopologyResponse(BaseModel):
    targetables: list[NodeSchema]
    objects: list[NodeSchema]
    policies: list[PolicySchema]
    edges: list[EdgeSchema]

    @classmethod
    def from_topology(cls, topology: Topology) -> TopologyResponse:
        edges = sorted(topology.edges(), key=lambda e: (e.source, e.target, e.edge_type.value))
        return cls(
            targetables=[NodeSchema.from_object(n) for n in topology.targetables()],
            objects=[NodeSchema.from_object(n) for n in topology.objects()],
            policies=[PolicySchema.from_policy(p, topology) for p in topology.policies()],
            edges=[EdgeSchema(source=e.source, target=e.target, type=e.edge_type.value) for e in edges],
        )


class PathsResponse(BaseModel):
    paths: list[list[str]]


class RuleSchema(BaseModel):
    name: str
    spec: Any
    source: str


class EffectivePolicySchema(BaseModel):
    path: list[str]
    rules: list[RuleSchema]


class EffectivePoliciesResponse(BaseModel):
    kind: str
    effective: list[EffectivePolicySchema]
