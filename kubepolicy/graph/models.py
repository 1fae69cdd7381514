"""Data structures for the policy topology graph."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class EdgeType(StrEnum):
    """Types of relationships between topology nodes."""

    LINK = "link"  # structural: parent object -> child object
    ATTACHMENT = "attachment"  # policy -> targetable


@dataclass(frozen=True)
class GraphEdge:
    """A typed edge between two nodes, identified by their locators."""

    source: str
    target: str
    edge_type: EdgeType
    label: str = ""  # e.g. "Gateway.gateway.networking.k8s.io->Listener.gateway.networking.k8s.io"
