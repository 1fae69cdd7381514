"""Built-in reconciler that reports the shape of each cycle's topology."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from typing import Any

from kubepolicy.graph import EdgeType, Topology
from kubepolicy.models.events import ResourceEvent
from kubepolicy.observability.logging import get_logger
from kubepolicy.observability.metrics import topology_edges, topology_nodes

_logger = get_logger("topology_reporter")


def report_topology(ctx: Any, events: Sequence[ResourceEvent], topology: Topology) -> None:
    """Log a topology summary and refresh the topology gauges."""
    targetables = topology.targetables()
    policies = topology.policies()
    topology_nodes.labels(partition="targetables").set(len(targetables))
    topology_nodes.labels(partition="objects").set(len(topology.objects()))
    topology_nodes.labels(partition="policies").set(len(policies))
    for edge_type in EdgeType:
        topology_edges.labels(edge_type=edge_type.value).set(len(topology.edges(edge_type)))

    kinds = Counter(str(node.group_kind) for node in targetables)
    attached = sum(1 for policy in policies if topology.targetables().children(policy))
    _logger.info(
        "topology_reported",
        events=len(events),
        targetables=dict(sorted(kinds.items())),
        policies=len(policies),
        attached_policies=attached,
        paths=len(topology.paths()),
    )
