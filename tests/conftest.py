"""Shared fixtures for KubePolicy tests.

The document builders live in ``factories`` so test modules can also call them
directly; the fixtures here wire them into stores, builders and topologies.
"""

from __future__ import annotations

import pytest
from factories import TEST_POLICY, complex_topology_docs, converter_for, policy_kind, store_from

from kubepolicy.apis.gateway import BACKEND_TLS_POLICY
from kubepolicy.cache.store import Store
from kubepolicy.graph import Topology
from kubepolicy.machinery.builder import TopologyBuilder, gateway_api_topology_builder


@pytest.fixture
def builder() -> TopologyBuilder:
    """Gateway API builder observing TestPolicy and BackendTLSPolicy."""
    return gateway_api_topology_builder(policy_kinds=[TEST_POLICY, BACKEND_TLS_POLICY])


@pytest.fixture
def complex_store() -> Store:
    return store_from(complex_topology_docs(), converter_for(policy_kind()))


@pytest.fixture
def complex_topology(builder: TopologyBuilder, complex_store: Store) -> Topology:
    return builder.build(complex_store)
