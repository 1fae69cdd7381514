"""Capability interfaces every resource kind implements to join the topology.

An Object is anything with a (group, kind, namespace, name) identity.  Its
locator is the graph's node key and the value policy target references are
compared against.  Targetables can receive policies; Policies declare target
references and know how to merge with each other.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

SECTION_SEPARATOR = "#"
_KIND_NAME_SEPARATOR = ":"
_NAMESPACE_SEPARATOR = "/"


@dataclass(frozen=True, order=True)
class GroupKind:
    """API group and kind of a resource.  Core kinds have an empty group."""

    group: str
    kind: str

    def __str__(self) -> str:
        if not self.group:
            return self.kind
        return f"{self.kind}.{self.group}"

    @classmethod
    def parse(cls, value: str) -> GroupKind:
        """Parse ``Kind.group`` (or bare ``Kind`` for the core group)."""
        kind, _, group = value.partition(".")
        if not kind:
            raise ValueError(f"Invalid group kind: {value!r}")
        return cls(group=group, kind=kind)


def locator_for(group_kind: GroupKind, namespace: str, name: str) -> str:
    """Build the locator of an object from its identity.

    ``gateway.gateway.networking.k8s.io:my-namespace/my-gateway``,
    ``service:my-namespace/my-service``, ``gatewayclass.gateway.networking.k8s.io:my-class``.
    """
    qualified = str(group_kind).lower()
    if namespace:
        return f"{qualified}{_KIND_NAME_SEPARATOR}{namespace}{_NAMESPACE_SEPARATOR}{name}"
    return f"{qualified}{_KIND_NAME_SEPARATOR}{name}"


def section_name(name: str, section: str) -> str:
    """Append a sub-resource name to an object name or locator."""
    return f"{name}{SECTION_SEPARATOR}{section}"


# Alias used where the argument is a locator rather than a bare name.
section_locator = section_name


class Object(ABC):
    """A node of the topology."""

    @property
    @abstractmethod
    def group_kind(self) -> GroupKind: ...

    @property
    @abstractmethod
    def namespace(self) -> str: ...

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    def locator(self) -> str:
        return locator_for(self.group_kind, self.namespace, self.name)


class Targetable(Object):
    """An Object policies can attach to.

    Holds a non-owning list of the policies currently attached to it.  Only the
    topology builder calls ``set_policies``, and only on wrapper instances it
    created for the build in progress.
    """

    _attached: tuple[Policy, ...] = ()

    def set_policies(self, policies: list[Policy]) -> None:
        self._attached = tuple(policies)

    def policies(self) -> list[Policy]:
        return list(self._attached)


class PolicyTargetReference(Object):
    """Reference from a policy to a targetable, compared by locator."""


@dataclass(frozen=True)
class MergeableRule:
    """A single policy rule and the locator of the policy it came from."""

    spec: Any
    source: str


# (higher, lower) -> merged.  "higher" is closer to the root of a path.
MergeStrategy = Callable[["Policy | None", "Policy | None"], "Policy | None"]


class Policy(Object):
    """An Object that targets one or more Targetables and merges with its peers."""

    @abstractmethod
    def target_refs(self) -> list[PolicyTargetReference]: ...

    @abstractmethod
    def merge_strategy(self) -> MergeStrategy: ...

    @abstractmethod
    def rules(self) -> Mapping[str, MergeableRule]: ...

    @abstractmethod
    def with_rules(self, rules: Mapping[str, MergeableRule]) -> Policy:
        """Return a copy of this policy carrying *rules* instead of its own."""

    def empty(self) -> bool:
        return not self.rules()

    def merge(self, other: Policy | None) -> Policy | None:
        """Merge with *other*, the policy closer to the root of the path."""
        return self.merge_strategy()(other, self)
