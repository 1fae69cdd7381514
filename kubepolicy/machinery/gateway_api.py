"""Topology wrappers for Gateway API and core resources.

Each wrapper turns a typed resource into a Targetable for the duration of one
topology build.  Sub-resource wrappers (listeners, route rules, service ports)
hold a back-reference to their parent wrapper and derive their locator by
appending ``#<section>`` to the parent's locator, which is exactly what a
policy target reference with a ``sectionName`` resolves to.
"""

from __future__ import annotations

from typing import Generic, TypeVar

from kubepolicy.apis import core, gateway
from kubepolicy.apis.meta import Resource
from kubepolicy.machinery.objects import (
    GroupKind,
    PolicyTargetReference,
    Targetable,
    section_locator,
    section_name,
)

R = TypeVar("R", bound=Resource)


class ResourceTargetable(Targetable, Generic[R]):
    """Targetable backed by a whole resource from the store."""

    def __init__(self, resource: R) -> None:
        self.resource = resource

    @property
    def group_kind(self) -> GroupKind:
        return self.resource.group_kind

    @property
    def namespace(self) -> str:
        return self.resource.namespace

    @property
    def name(self) -> str:
        return self.resource.name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.locator!r})"


class SectionTargetable(Targetable):
    """Targetable synthesised from a named section of a parent targetable."""

    kind: GroupKind

    def __init__(self, parent: ResourceTargetable, section: str) -> None:
        self.parent = parent
        self.section = section

    @property
    def group_kind(self) -> GroupKind:
        return self.kind

    @property
    def namespace(self) -> str:
        return self.parent.namespace

    @property
    def name(self) -> str:
        return section_name(self.parent.name, self.section)

    @property
    def locator(self) -> str:
        return section_locator(self.parent.locator, self.section)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.locator!r})"


class GatewayClass(ResourceTargetable[gateway.GatewayClass]):
    pass


class Gateway(ResourceTargetable[gateway.Gateway]):
    pass


class Listener(SectionTargetable):
    kind = gateway.LISTENER

    def __init__(self, parent: Gateway, listener: gateway.Listener) -> None:
        super().__init__(parent, listener.name)
        self.listener = listener


class HTTPRoute(ResourceTargetable[gateway.HTTPRoute]):
    pass


class HTTPRouteRule(SectionTargetable):
    kind = gateway.HTTP_ROUTE_RULE

    def __init__(self, parent: HTTPRoute, rule: gateway.HTTPRouteRule, index: int) -> None:
        super().__init__(parent, rule_name(rule, index))
        self.rule = rule


class GRPCRoute(ResourceTargetable[gateway.GRPCRoute]):
    pass


class GRPCRouteRule(SectionTargetable):
    kind = gateway.GRPC_ROUTE_RULE

    def __init__(self, parent: GRPCRoute, rule: gateway.GRPCRouteRule, index: int) -> None:
        super().__init__(parent, rule_name(rule, index))
        self.rule = rule


class TCPRoute(ResourceTargetable[gateway.TCPRoute]):
    pass


class TCPRouteRule(SectionTargetable):
    kind = gateway.TCP_ROUTE_RULE

    def __init__(self, parent: TCPRoute, rule: gateway.TCPRouteRule, index: int) -> None:
        super().__init__(parent, rule_name(rule, index))
        self.rule = rule


class Service(ResourceTargetable[core.Service]):
    pass


class ServicePort(SectionTargetable):
    kind = core.SERVICE_PORT

    def __init__(self, parent: Service, port: core.ServicePort) -> None:
        super().__init__(parent, port.name)
        self.port = port


def rule_name(rule: gateway.RouteRule, index: int) -> str:
    """Name of the *index*-th (0-based) rule of a route: its own name or ``rule-<n>``."""
    return rule.name or f"rule-{index + 1}"


# ---------------------------------------------------------------------------
# Policy target references
# ---------------------------------------------------------------------------


class LocalPolicyTargetReference(PolicyTargetReference):
    """Reference to an object in the policy's own namespace."""

    def __init__(self, group: str, kind: str, name: str, policy_namespace: str) -> None:
        self._group_kind = GroupKind(group, kind)
        self._name = name
        self.policy_namespace = policy_namespace

    @property
    def group_kind(self) -> GroupKind:
        return self._group_kind

    @property
    def namespace(self) -> str:
        return self.policy_namespace

    @property
    def name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.locator!r})"


class LocalPolicyTargetReferenceWithSectionName(LocalPolicyTargetReference):
    """Local reference optionally narrowed to a named section (listener, rule, port)."""

    def __init__(
        self,
        group: str,
        kind: str,
        name: str,
        policy_namespace: str,
        section: str | None = None,
    ) -> None:
        super().__init__(group, kind, name, policy_namespace)
        self.section = section

    @property
    def name(self) -> str:
        if not self.section:
            return self._name
        return section_name(self._name, self.section)


class NamespacedPolicyTargetReference(LocalPolicyTargetReference):
    """Reference that may point at another namespace; defaults to the policy's."""

    def __init__(
        self,
        group: str,
        kind: str,
        name: str,
        policy_namespace: str,
        namespace: str | None = None,
    ) -> None:
        super().__init__(group, kind, name, policy_namespace)
        self.target_namespace = namespace

    @property
    def namespace(self) -> str:
        return self.target_namespace or self.policy_namespace


class NamespacedPolicyTargetReferenceWithSectionName(NamespacedPolicyTargetReference):
    """Namespaced reference optionally narrowed to a named section."""

    def __init__(
        self,
        group: str,
        kind: str,
        name: str,
        policy_namespace: str,
        namespace: str | None = None,
        section: str | None = None,
    ) -> None:
        super().__init__(group, kind, name, policy_namespace, namespace)
        self.section = section

    @property
    def name(self) -> str:
        if not self.section:
            return self._name
        return section_name(self._name, self.section)


WRAPPERS: dict[GroupKind, type[ResourceTargetable]] = {
    gateway.GATEWAY_CLASS: GatewayClass,
    gateway.GATEWAY: Gateway,
    gateway.HTTP_ROUTE: HTTPRoute,
    gateway.GRPC_ROUTE: GRPCRoute,
    gateway.TCP_ROUTE: TCPRoute,
    core.SERVICE: Service,
}
