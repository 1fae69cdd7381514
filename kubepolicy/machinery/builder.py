"""Topology construction from a Store snapshot.

A builder is configured once with the kinds it cares about and how they relate,
then called on every reconciliation cycle to produce a fresh, immutable
Topology.  Build order:

    1. wrap targetable kinds and expand their sections (listeners, rules, ports)
    2. collect plain object kinds
    3. evaluate link functions into structural edges
    4. prune everything unreachable from the declared root kinds
    5. attach policies whose target references resolve to a surviving targetable

Every input list is sorted by (namespace, name) first so two builds over the
same store produce identical topologies.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from kubepolicy.apis import core, gateway
from kubepolicy.cache.store import Store
from kubepolicy.graph import EdgeType, GraphEdge, Topology
from kubepolicy.machinery import gateway_api, links
from kubepolicy.machinery.links import Expansion, LinkBuilder, NodeIndex
from kubepolicy.machinery.objects import (
    SECTION_SEPARATOR,
    GroupKind,
    Object,
    Policy,
    PolicyTargetReference,
    Targetable,
)
from kubepolicy.observability.logging import get_logger

_logger = get_logger("topology_builder")

TargetableFactory = Callable[[Any], Targetable]


def _sort_key(obj: Any) -> tuple[str, str]:
    return (getattr(obj, "namespace", "") or "", getattr(obj, "name", "") or "")


class TopologyBuilder:
    """Builds a Topology from the objects held in a Store."""

    def __init__(
        self,
        *,
        roots: Iterable[GroupKind] = (),
        targetables: Mapping[GroupKind, TargetableFactory] | None = None,
        objects: Iterable[GroupKind] = (),
        policy_kinds: Iterable[GroupKind] = (),
        links: Iterable[LinkBuilder] = (),
        expansions: Iterable[Expansion] = (),
        require_reference_grants: bool = True,
    ) -> None:
        self.roots = tuple(roots)
        self.targetables = dict(targetables or {})
        self.objects = tuple(objects)
        self.policy_kinds = tuple(policy_kinds)
        self.links = tuple(links)
        self.expansions: dict[GroupKind, list[Expansion]] = {}
        for expansion in expansions:
            self.expansions.setdefault(expansion.kind, []).append(expansion)
        self.require_reference_grants = require_reference_grants

    def watched_kinds(self) -> list[GroupKind]:
        """Every stored kind this builder reads."""
        kinds = [*self.targetables, *self.objects, *self.policy_kinds]
        if self.require_reference_grants:
            kinds.append(gateway.REFERENCE_GRANT)
        return list(dict.fromkeys(kinds))

    def build(self, store: Store) -> Topology:
        snapshot = store.items()
        index = NodeIndex()
        edges: list[GraphEdge] = []
        owners: dict[str, str] = {}

        for kind, wrap in self.targetables.items():
            for resource in sorted(snapshot.get(kind, {}).values(), key=_sort_key):
                if not getattr(resource, "name", ""):
                    _logger.warning("object_skipped", kind=str(kind), reason="missing name")
                    continue
                node = wrap(resource)
                if not index.add(node):
                    _logger.warning("duplicate_locator", locator=node.locator)
                    continue
                for expansion in self.expansions.get(kind, ()):
                    for section in expansion.expand(node):
                        if index.add(section):
                            owners[section.locator] = node.locator
                            edges.append(_link_edge(node, section, f"{kind}->{section.group_kind}"))

        for kind in self.objects:
            for obj in sorted(snapshot.get(kind, {}).values(), key=_sort_key):
                if not isinstance(obj, Object):
                    _logger.warning("object_skipped", kind=str(kind), reason="not a topology object")
                    continue
                if not index.add(obj):
                    _logger.warning("duplicate_locator", locator=obj.locator)

        for link_builder in self.links:
            link = link_builder(index)
            for child in index.by_kind(link.to_kind):
                for parent in link.func(child):
                    if parent.locator in index:
                        edges.append(_link_edge(parent, child, link.label))

        nodes = self._reachable(index, edges, owners)
        edges = [e for e in edges if e.source in nodes and e.target in nodes]
        reachable_targetables = {
            loc: node for loc, node in nodes.items() if isinstance(node, Targetable)
        }
        plain_objects = [node for node in nodes.values() if not isinstance(node, Targetable)]

        policies, attachments = self._attach(snapshot, reachable_targetables, edges)
        for loc, node in reachable_targetables.items():
            node.set_policies(attachments.get(loc, []))

        roots = None
        if self.roots:
            roots = [loc for loc, node in reachable_targetables.items() if node.group_kind in self.roots]
        topology = Topology(
            targetables=list(reachable_targetables.values()),
            objects=plain_objects,
            policies=policies,
            edges=edges,
            roots=roots,
        )
        _logger.debug(
            "topology_built",
            targetables=len(topology.targetables()),
            objects=len(topology.objects()),
            policies=len(topology.policies()),
            edges=len(topology.edges()),
        )
        return topology

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------

    def _reachable(
        self, index: NodeIndex, edges: Sequence[GraphEdge], owners: Mapping[str, str]
    ) -> dict[str, Object]:
        """Nodes reachable from any root-kind node, in index order.

        A reachable section keeps its owner: a backendRef naming a port reaches
        the ServicePort directly, and the Service it belongs to stays in the
        graph.  Without declared roots every indexed node is kept.
        """
        if not self.roots:
            return {node.locator: node for node in index}
        children: dict[str, list[str]] = {}
        for edge in edges:
            children.setdefault(edge.source, []).append(edge.target)
        seen: set[str] = set()
        stack = [node.locator for kind in self.roots for node in index.by_kind(kind)]
        while stack:
            loc = stack.pop()
            if loc in seen:
                continue
            seen.add(loc)
            stack.extend(children.get(loc, ()))
            if loc in owners:
                stack.append(owners[loc])
        return {node.locator: node for node in index if node.locator in seen}

    # ------------------------------------------------------------------
    # Policy attachment
    # ------------------------------------------------------------------

    def _attach(
        self,
        snapshot: Mapping[GroupKind, Mapping[str, Any]],
        targetables: Mapping[str, Targetable],
        edges: list[GraphEdge],
    ) -> tuple[list[Policy], dict[str, list[Policy]]]:
        grants = list(snapshot.get(gateway.REFERENCE_GRANT, {}).values())
        policies: list[Policy] = []
        attachments: dict[str, list[Policy]] = {}
        for kind in self.policy_kinds:
            for policy in sorted(snapshot.get(kind, {}).values(), key=_sort_key):
                if not isinstance(policy, Policy):
                    _logger.warning("policy_skipped", kind=str(kind), reason="not a policy")
                    continue
                policies.append(policy)
                for ref in policy.target_refs():
                    reason = self._rejection(policy, ref, grants)
                    if reason:
                        _logger.info("target_ref_rejected", policy=policy.locator, target=ref.locator, reason=reason)
                        continue
                    target = targetables.get(ref.locator)
                    if target is None:
                        _logger.debug("target_ref_unresolved", policy=policy.locator, target=ref.locator)
                        continue
                    attached = attachments.setdefault(target.locator, [])
                    if any(p is policy for p in attached):
                        continue
                    attached.append(policy)
                    edges.append(GraphEdge(policy.locator, target.locator, EdgeType.ATTACHMENT))
        return policies, attachments

    def _rejection(self, policy: Policy, ref: PolicyTargetReference, grants: Sequence[Any]) -> str:
        """Reason *ref* may not be honoured, or an empty string."""
        if not ref.group_kind.kind or not ref.name:
            return "missing kind or name"
        if not self.require_reference_grants or not ref.namespace or ref.namespace == policy.namespace:
            return ""
        target_name = ref.name.partition(SECTION_SEPARATOR)[0]
        for grant in grants:
            if not isinstance(grant, gateway.ReferenceGrant) or grant.namespace != ref.namespace:
                continue
            if grant.permits(policy.group_kind, policy.namespace, ref.group_kind, target_name):
                return ""
        return "cross-namespace reference not permitted by any ReferenceGrant"


def _link_edge(parent: Object, child: Object, label: str) -> GraphEdge:
    return GraphEdge(parent.locator, child.locator, EdgeType.LINK, label)


# ---------------------------------------------------------------------------
# Gateway API builder
# ---------------------------------------------------------------------------


def gateway_api_topology_builder(
    policy_kinds: Iterable[GroupKind] = (),
    object_kinds: Iterable[GroupKind] = (),
    object_links: Iterable[LinkBuilder] = (),
    *,
    expand_listeners: bool = True,
    expand_rules: bool = True,
    expand_ports: bool = True,
) -> TopologyBuilder:
    """Builder for the Gateway API hierarchy rooted at GatewayClasses.

    ``object_kinds`` and ``object_links`` add kinds outside the Gateway API
    (plain objects or extra targetables linked into the hierarchy).
    """
    expansions: list[Expansion] = []
    link_builders: list[LinkBuilder] = [links.link_gateway_class_to_gateway]

    if expand_listeners:
        expansions.append(Expansion(gateway.GATEWAY, links.expand_gateway_listeners))
    for route_kind, rule_kind in links.ROUTE_RULE_KINDS.items():
        if expand_listeners:
            link_builders.append(links.link_listener_to_route(route_kind))
        else:
            link_builders.append(links.link_gateway_to_route(route_kind))

        backend_source = route_kind
        if expand_rules:
            expansions.append(Expansion(route_kind, links.RULE_EXPANSIONS[route_kind]))
            backend_source = rule_kind
        link_builders.append(links.link_to_service(backend_source, ports_expanded=expand_ports))
        if expand_ports:
            link_builders.append(links.link_to_service_port(backend_source))

    if expand_ports:
        expansions.append(Expansion(core.SERVICE, links.expand_service_ports))

    return TopologyBuilder(
        roots=[gateway.GATEWAY_CLASS],
        targetables=dict(gateway_api.WRAPPERS),
        objects=object_kinds,
        policy_kinds=policy_kinds,
        links=[*link_builders, *object_links],
        expansions=expansions,
    )
