"""Core (v1) resource models."""

from __future__ import annotations

from pydantic import Field

from kubepolicy.apis.meta import KubeModel, Resource
from kubepolicy.machinery.objects import GroupKind

SERVICE = GroupKind("", "Service")
SERVICE_PORT = GroupKind("", "ServicePort")


class ServicePort(KubeModel):
    name: str = ""
    port: int
    protocol: str = "TCP"
    target_port: int | str | None = None


class ServiceSpec(KubeModel):
    type: str = "ClusterIP"
    ports: list[ServicePort] = Field(default_factory=list)
    selector: dict[str, str] = Field(default_factory=dict)


class Service(Resource):
    spec: ServiceSpec = Field(default_factory=ServiceSpec)
