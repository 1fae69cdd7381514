"""Base models shared by every typed Kubernetes resource."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kubepolicy.machinery.objects import GroupKind, Object


class KubeModel(BaseModel):
    """camelCase on the wire, snake_case in Python; unknown fields are preserved."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class ObjectMeta(KubeModel):
    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    generation: int | None = None
    creation_timestamp: datetime | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class Resource(KubeModel, Object):
    """A typed Kubernetes object.  Any resource is a plain topology Object."""

    api_version: str
    kind: str
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    status: dict[str, Any] | None = None

    @property
    def group_kind(self) -> GroupKind:
        group, _, _version = self.api_version.rpartition("/")
        return GroupKind(group=group, kind=self.kind)

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def uid(self) -> str:
        return self.metadata.uid


class UnstructuredResource(Resource):
    """Any kind without a dedicated model.  ``spec`` is kept as a plain mapping."""

    spec: dict[str, Any] = Field(default_factory=dict)
