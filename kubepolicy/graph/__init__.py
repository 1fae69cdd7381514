"""Policy topology graph.

Immutable, per-cycle snapshot of targetables, plain objects and policies,
connected by structural links and policy attachments.  Supports parent/child,
root/leaf and root-to-leaf path queries.
"""

from kubepolicy.graph.models import EdgeType, GraphEdge
from kubepolicy.graph.topology import Collection, Topology

__all__ = [
    "Collection",
    "EdgeType",
    "GraphEdge",
    "Topology",
]
