"""Structural links and expansion rules for Gateway API kinds.

A link computes the parents of a child node; the builder turns every
(parent, child) pair into a structural edge.  Link builders receive the index
of nodes collected for the current build and return a ``LinkFunc`` closed over
it, so parents are always resolved against the same snapshot.

    GatewayClass -> Gateway -> Listener -> HTTPRoute/GRPCRoute/TCPRoute
                 -> route rule -> Service -> ServicePort
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass

from kubepolicy.apis import core, gateway
from kubepolicy.machinery import gateway_api
from kubepolicy.machinery.objects import GroupKind, Object, Targetable, locator_for


@dataclass(frozen=True)
class LinkFunc:
    """Computes the parents of kind *from_kind* of a child of kind *to_kind*."""

    from_kind: GroupKind
    to_kind: GroupKind
    func: Callable[[Object], Iterable[Object]]

    @property
    def label(self) -> str:
        return f"{self.from_kind}->{self.to_kind}"


class NodeIndex:
    """Nodes collected for one build, by kind and by locator."""

    def __init__(self) -> None:
        self._by_kind: dict[GroupKind, list[Object]] = {}
        self._by_locator: dict[str, Object] = {}

    def add(self, node: Object) -> bool:
        """Index *node*.  Returns False when its locator is already taken."""
        if node.locator in self._by_locator:
            return False
        self._by_locator[node.locator] = node
        self._by_kind.setdefault(node.group_kind, []).append(node)
        return True

    def by_kind(self, kind: GroupKind) -> list[Object]:
        return list(self._by_kind.get(kind, ()))

    def get(self, locator: str) -> Object | None:
        return self._by_locator.get(locator)

    def __contains__(self, locator: object) -> bool:
        return locator in self._by_locator

    def __iter__(self) -> Iterator[Object]:
        return iter(list(self._by_locator.values()))


LinkBuilder = Callable[[NodeIndex], LinkFunc]


@dataclass(frozen=True)
class Expansion:
    """Turns named sections of a parent targetable into their own targetables."""

    kind: GroupKind
    expand: Callable[[Targetable], Sequence[Targetable]]


# ---------------------------------------------------------------------------
# Expansion rules
# ---------------------------------------------------------------------------


def expand_gateway_listeners(node: Targetable) -> list[Targetable]:
    if not isinstance(node, gateway_api.Gateway):
        return []
    return [gateway_api.Listener(node, listener) for listener in node.resource.spec.listeners]


def expand_http_route_rules(node: Targetable) -> list[Targetable]:
    if not isinstance(node, gateway_api.HTTPRoute):
        return []
    return [gateway_api.HTTPRouteRule(node, rule, i) for i, rule in enumerate(node.resource.spec.rules)]


def expand_grpc_route_rules(node: Targetable) -> list[Targetable]:
    if not isinstance(node, gateway_api.GRPCRoute):
        return []
    return [gateway_api.GRPCRouteRule(node, rule, i) for i, rule in enumerate(node.resource.spec.rules)]


def expand_tcp_route_rules(node: Targetable) -> list[Targetable]:
    if not isinstance(node, gateway_api.TCPRoute):
        return []
    return [gateway_api.TCPRouteRule(node, rule, i) for i, rule in enumerate(node.resource.spec.rules)]


def expand_service_ports(node: Targetable) -> list[Targetable]:
    if not isinstance(node, gateway_api.Service):
        return []
    return [gateway_api.ServicePort(node, port) for port in node.resource.spec.ports if port.name]


ROUTE_RULE_KINDS: dict[GroupKind, GroupKind] = {
    gateway.HTTP_ROUTE: gateway.HTTP_ROUTE_RULE,
    gateway.GRPC_ROUTE: gateway.GRPC_ROUTE_RULE,
    gateway.TCP_ROUTE: gateway.TCP_ROUTE_RULE,
}

RULE_EXPANSIONS: dict[GroupKind, Callable[[Targetable], list[Targetable]]] = {
    gateway.HTTP_ROUTE: expand_http_route_rules,
    gateway.GRPC_ROUTE: expand_grpc_route_rules,
    gateway.TCP_ROUTE: expand_tcp_route_rules,
}


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------


def link_gateway_class_to_gateway(index: NodeIndex) -> LinkFunc:
    classes = index.by_kind(gateway.GATEWAY_CLASS)

    def parents(child: Object) -> list[Object]:
        if not isinstance(child, gateway_api.Gateway):
            return []
        return [gc for gc in classes if gc.name == child.resource.spec.gateway_class_name]

    return LinkFunc(gateway.GATEWAY_CLASS, gateway.GATEWAY, parents)


def _parent_gateways(route: Object) -> Iterator[tuple[str, str | None]]:
    """Yield (gateway locator, section name) for every Gateway parentRef of *route*."""
    if not isinstance(route, gateway_api.ResourceTargetable):
        return
    for ref in route.resource.spec.parent_refs:
        if ref.group != gateway.GROUP or ref.kind != gateway.GATEWAY.kind:
            continue
        yield locator_for(gateway.GATEWAY, ref.namespace or route.namespace, ref.name), ref.section_name


def link_gateway_to_route(route_kind: GroupKind) -> LinkBuilder:
    """Routes attach to whole gateways (listeners not expanded)."""

    def build(index: NodeIndex) -> LinkFunc:
        def parents(child: Object) -> list[Object]:
            found = (index.get(loc) for loc, _section in _parent_gateways(child))
            return [gw for gw in found if gw is not None]

        return LinkFunc(gateway.GATEWAY, route_kind, parents)

    return build


def link_listener_to_route(route_kind: GroupKind) -> LinkBuilder:
    """Routes attach to the listener named by ``sectionName``, or to every listener of the gateway."""

    def build(index: NodeIndex) -> LinkFunc:
        listeners: dict[str, list[gateway_api.Listener]] = {}
        for node in index.by_kind(gateway.LISTENER):
            if isinstance(node, gateway_api.Listener):
                listeners.setdefault(node.parent.locator, []).append(node)

        def parents(child: Object) -> list[Object]:
            result: list[Object] = []
            for loc, section in _parent_gateways(child):
                candidates = listeners.get(loc, [])
                if section:
                    result.extend(lst for lst in candidates if lst.section == section)
                else:
                    result.extend(candidates)
            return result

        return LinkFunc(gateway.LISTENER, route_kind, parents)

    return build


def _backend_refs(node: Object) -> tuple[str, list[gateway.BackendRef]]:
    if isinstance(node, gateway_api.SectionTargetable):
        return node.namespace, list(getattr(node, "rule").backend_refs)
    if not isinstance(node, gateway_api.ResourceTargetable):
        return node.namespace, []
    refs = [ref for rule in node.resource.spec.rules for ref in rule.backend_refs]
    return node.namespace, refs


def _service_backend_refs(node: Object) -> Iterator[tuple[str, gateway.BackendRef]]:
    namespace, refs = _backend_refs(node)
    for ref in refs:
        if ref.group != core.SERVICE.group or ref.kind != core.SERVICE.kind:
            continue
        yield locator_for(core.SERVICE, ref.namespace or namespace, ref.name), ref


def link_to_service(source_kind: GroupKind, ports_expanded: bool) -> LinkBuilder:
    """Route (or route rule) -> Service for each backendRef.

    With service ports expanded, backendRefs carrying a port link to the port
    instead (see ``link_to_service_port``).
    """

    def build(index: NodeIndex) -> LinkFunc:
        referrers: dict[str, list[Object]] = {}
        for node in index.by_kind(source_kind):
            for loc, ref in _service_backend_refs(node):
                if ports_expanded and ref.port is not None:
                    continue
                referrers.setdefault(loc, []).append(node)

        def parents(child: Object) -> list[Object]:
            return referrers.get(child.locator, [])

        return LinkFunc(source_kind, core.SERVICE, parents)

    return build


def link_to_service_port(source_kind: GroupKind) -> LinkBuilder:
    """Route (or route rule) -> ServicePort for each backendRef carrying a port."""

    def build(index: NodeIndex) -> LinkFunc:
        referrers: dict[tuple[str, int], list[Object]] = {}
        for node in index.by_kind(source_kind):
            for loc, ref in _service_backend_refs(node):
                if ref.port is not None:
                    referrers.setdefault((loc, ref.port), []).append(node)

        def parents(child: Object) -> list[Object]:
            if not isinstance(child, gateway_api.ServicePort):
                return []
            return referrers.get((child.parent.locator, child.port.port), [])

        return LinkFunc(source_kind, core.SERVICE_PORT, parents)

    return build
