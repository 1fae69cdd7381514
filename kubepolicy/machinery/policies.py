"""Concrete policy kinds.

``GenericPolicy`` adapts any policy-shaped custom resource (``spec.targetRef``
/ ``spec.targetRefs`` plus rules) so new policy kinds can be observed by
configuration alone.  ``BackendTLSPolicy`` is the Gateway API's own policy.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import Field, PrivateAttr

from kubepolicy.apis.gateway import BackendTLSPolicySpec
from kubepolicy.apis.meta import Resource, UnstructuredResource
from kubepolicy.machinery.gateway_api import (
    LocalPolicyTargetReferenceWithSectionName,
    NamespacedPolicyTargetReference,
    NamespacedPolicyTargetReferenceWithSectionName,
)
from kubepolicy.machinery.merge import atomic_defaults
from kubepolicy.machinery.objects import (
    GroupKind,
    MergeableRule,
    MergeStrategy,
    Policy,
    PolicyTargetReference,
)

_TARGET_REF_KEYS = ("targetRef", "targetRefs")


def target_ref_from_dict(ref: Mapping[str, Any], policy_namespace: str) -> PolicyTargetReference:
    """Build a target reference from its document form.

    References carrying a ``namespace`` are namespaced; everything else is local
    to the policy.  Either form may be narrowed by ``sectionName``.
    """
    group = str(ref.get("group") or "")
    kind = str(ref.get("kind") or "")
    name = str(ref.get("name") or "")
    section = ref.get("sectionName")
    if "namespace" in ref:
        if section:
            return NamespacedPolicyTargetReferenceWithSectionName(
                group, kind, name, policy_namespace, ref.get("namespace"), section
            )
        return NamespacedPolicyTargetReference(group, kind, name, policy_namespace, ref.get("namespace"))
    return LocalPolicyTargetReferenceWithSectionName(group, kind, name, policy_namespace, section)


class GenericPolicy(Policy):
    """Policy over an unstructured document with a per-kind merge strategy."""

    def __init__(
        self,
        resource: UnstructuredResource,
        strategy: MergeStrategy,
        rules: Mapping[str, MergeableRule] | None = None,
    ) -> None:
        self.resource = resource
        self._strategy = strategy
        self._rules = dict(rules) if rules is not None else None

    @property
    def group_kind(self) -> GroupKind:
        return self.resource.group_kind

    @property
    def namespace(self) -> str:
        return self.resource.namespace

    @property
    def name(self) -> str:
        return self.resource.name

    def target_refs(self) -> list[PolicyTargetReference]:
        spec = self.resource.spec
        raw = list(spec.get("targetRefs") or [])
        if spec.get("targetRef"):
            raw.append(spec["targetRef"])
        return [target_ref_from_dict(ref, self.namespace) for ref in raw if isinstance(ref, Mapping)]

    def merge_strategy(self) -> MergeStrategy:
        return self._strategy

    def rules(self) -> dict[str, MergeableRule]:
        if self._rules is not None:
            return dict(self._rules)
        spec = self.resource.spec
        declared = spec.get("rules")
        if not isinstance(declared, Mapping):
            declared = {k: v for k, v in spec.items() if k not in _TARGET_REF_KEYS}
        return {key: MergeableRule(spec=value, source=self.locator) for key, value in declared.items()}

    def with_rules(self, rules: Mapping[str, MergeableRule]) -> GenericPolicy:
        return GenericPolicy(self.resource, self._strategy, rules)

    def __repr__(self) -> str:
        return f"GenericPolicy({self.locator!r})"


@dataclass(frozen=True)
class PolicyKind:
    """A policy kind observed as unstructured documents, and how it merges."""

    group_kind: GroupKind
    strategy: MergeStrategy

    def from_document(self, doc: Mapping[str, Any]) -> GenericPolicy:
        return GenericPolicy(UnstructuredResource.model_validate(doc), self.strategy)


class BackendTLSPolicy(Resource, Policy):
    """TLS settings for backends, attached to Services or individual service ports."""

    spec: BackendTLSPolicySpec = Field(default_factory=BackendTLSPolicySpec)

    _rules: dict[str, MergeableRule] | None = PrivateAttr(default=None)

    def target_refs(self) -> list[PolicyTargetReference]:
        return [
            LocalPolicyTargetReferenceWithSectionName(ref.group, ref.kind, ref.name, self.namespace, ref.section_name)
            for ref in self.spec.target_refs
        ]

    def merge_strategy(self) -> MergeStrategy:
        return atomic_defaults

    def rules(self) -> dict[str, MergeableRule]:
        if self._rules is not None:
            return dict(self._rules)
        rules = {}
        if self.spec.validation:
            rules["validation"] = MergeableRule(spec=self.spec.validation, source=self.locator)
        if self.spec.options:
            rules["options"] = MergeableRule(spec=self.spec.options, source=self.locator)
        return rules

    def with_rules(self, rules: Mapping[str, MergeableRule]) -> BackendTLSPolicy:
        merged = self.model_copy()
        merged._rules = dict(rules)
        return merged
