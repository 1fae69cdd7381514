"""Prometheus metrics for the controller and topology."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

events_total = Counter(
    "kubepolicy_events_total",
    "Resource events applied to the store",
    ["kind", "event_type"],
)

conversion_errors_total = Counter(
    "kubepolicy_conversion_errors_total",
    "Documents that could not be converted to their typed object",
    ["kind"],
)

reconcile_cycles_total = Counter(
    "kubepolicy_reconcile_cycles_total",
    "Reconciliation cycles run",
    ["trigger"],
)

reconcile_duration_seconds = Histogram(
    "kubepolicy_reconcile_duration_seconds",
    "Time to rebuild the topology and run every reconciler",
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

reconciler_failures_total = Counter(
    "kubepolicy_reconciler_failures_total",
    "Reconciler invocations that raised",
    ["reconciler"],
)

topology_nodes = Gauge(
    "kubepolicy_topology_nodes",
    "Nodes in the most recently built topology",
    ["partition"],
)

topology_edges = Gauge(
    "kubepolicy_topology_edges",
    "Edges in the most recently built topology",
    ["edge_type"],
)

controller_ready = Gauge(
    "kubepolicy_controller_ready",
    "1 when every observation source has completed its initial listing",
)

queue_depth = Gauge(
    "kubepolicy_event_queue_depth",
    "Events waiting in the controller queue",
)
