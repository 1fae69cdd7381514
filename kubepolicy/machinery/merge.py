"""Merge strategies and the effective-policy-for-path fold.

A strategy combines a *higher* policy (closer to the root of a path) with a
*lower* one (closer to the leaf).  Every strategy tolerates ``None`` on either
side so the fold can start from nothing.

    atomic_defaults   lower replaces higher entirely when it has any rules
    atomic_overrides  higher replaces lower entirely when it has any rules
    merge_defaults    rule by rule: higher supplies defaults, lower overrides
    merge_overrides   rule by rule: higher's rules win over lower's
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TypeVar

from kubepolicy.machinery.objects import GroupKind, MergeStrategy, Policy, Targetable

P = TypeVar("P", bound=Policy)

PolicySelector = GroupKind | type[Policy] | Callable[[Policy], bool]


def atomic_defaults(higher: Policy | None, lower: Policy | None) -> Policy | None:
    if higher is None:
        return lower
    if lower is None:
        return higher
    if not lower.empty():
        return lower.with_rules(lower.rules())
    return higher.with_rules(higher.rules())


def atomic_overrides(higher: Policy | None, lower: Policy | None) -> Policy | None:
    if higher is None:
        return lower
    if lower is None:
        return higher
    if not higher.empty():
        return lower.with_rules(higher.rules())
    return lower.with_rules(lower.rules())


def merge_defaults(higher: Policy | None, lower: Policy | None) -> Policy | None:
    if higher is None:
        return lower
    if lower is None:
        return higher
    return lower.with_rules({**higher.rules(), **lower.rules()})


def merge_overrides(higher: Policy | None, lower: Policy | None) -> Policy | None:
    if higher is None:
        return lower
    if lower is None:
        return higher
    return lower.with_rules({**lower.rules(), **higher.rules()})


STRATEGIES: dict[str, MergeStrategy] = {
    "atomic": atomic_defaults,
    "merge": merge_defaults,
    "atomic-overrides": atomic_overrides,
    "merge-overrides": merge_overrides,
}


def strategy_by_name(name: str) -> MergeStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown merge strategy: {name!r}. Must be one of {sorted(STRATEGIES)}") from None


def _matcher(selector: PolicySelector) -> Callable[[Policy], bool]:
    if isinstance(selector, GroupKind):
        return lambda policy: policy.group_kind == selector
    if isinstance(selector, type):
        return lambda policy: isinstance(policy, selector)
    return selector


def ordered_policies(targetable: Targetable, selector: PolicySelector) -> list[Policy]:
    """Policies of the selected kind attached to *targetable*, ordered by namespace/name.

    The host object does not order its policies, so ties between policies of the
    same kind on the same targetable are broken lexicographically.
    """
    match = _matcher(selector)
    selected = [policy for policy in targetable.policies() if match(policy)]
    return sorted(selected, key=lambda policy: (policy.namespace, policy.name))


def effective_policy_for_path(path: Sequence[Targetable], selector: PolicySelector) -> Policy | None:
    """Fold the selected policies attached along *path*, root first.

    Returns ``None`` when no targetable on the path carries a policy of the
    selected kind.
    """
    effective: Policy | None = None
    for targetable in path:
        for policy in ordered_policies(targetable, selector):
            effective = policy if effective is None else policy.merge(effective)
    return effective
