"""Policy machinery: object model, topology construction and policy merging.

Submodules:
    objects      -- Object / Targetable / Policy capability interfaces, locators.
    gateway_api  -- Targetable wrappers and target references for Gateway API kinds.
    policies     -- GenericPolicy, PolicyKind, BackendTLSPolicy.
    links        -- Structural link functions between Gateway API kinds.
    builder      -- TopologyBuilder and the Gateway API builder factory.
    merge        -- Merge strategies and effective-policy-for-path.
"""

from kubepolicy.machinery.objects import (
    GroupKind,
    MergeableRule,
    MergeStrategy,
    Object,
    Policy,
    PolicyTargetReference,
    Targetable,
    locator_for,
)

__all__ = [
    "GroupKind",
    "MergeStrategy",
    "MergeableRule",
    "Object",
    "Policy",
    "PolicyTargetReference",
    "Targetable",
    "locator_for",
]
