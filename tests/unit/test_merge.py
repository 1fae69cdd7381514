"""Unit tests for merge strategies and effective-policy-for-path."""

from __future__ import annotations

from functools import reduce
from typing import Any

import pytest
from factories import (
    TEST_POLICY,
    make_gateway,
    make_gateway_class,
    make_http_route,
    make_policy,
    make_service,
    policy_kind,
    store_from,
    target_ref,
)
from hypothesis import given, settings
from hypothesis import strategies as st

from kubepolicy.apis.convert import Converter
from kubepolicy.graph import Topology
from kubepolicy.machinery import gateway_api
from kubepolicy.machinery.builder import gateway_api_topology_builder
from kubepolicy.machinery.merge import (
    STRATEGIES,
    atomic_defaults,
    atomic_overrides,
    effective_policy_for_path,
    merge_defaults,
    merge_overrides,
    ordered_policies,
    strategy_by_name,
)
from kubepolicy.machinery.objects import GroupKind, Policy
from kubepolicy.machinery.policies import GenericPolicy

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _policy(name: str, rules: dict[str, Any], strategy: str = "atomic", namespace: str = "my-namespace") -> Policy:
    return policy_kind(strategy).from_document(make_policy(name, [], rules, namespace=namespace))


def _rules(policy: Policy | None) -> dict[str, tuple[Any, str]]:
    """Rule name -> (spec, source policy name)."""
    assert policy is not None
    return {key: (rule.spec, rule.source.rsplit("/", 1)[-1]) for key, rule in policy.rules().items()}


def _targetable(name: str = "gw") -> gateway_api.Gateway:
    return gateway_api.Gateway(Converter().from_document(make_gateway(name)))


def _topology(strategy: str, gateway_rules: dict[str, Any], listener_rules: dict[str, Any]) -> Topology:
    docs = [
        make_gateway_class(),
        make_gateway(),
        make_http_route(),
        make_service(),
        make_policy("gw-policy", [target_ref("Gateway", "my-gateway")], gateway_rules),
        make_policy("listener-policy", [target_ref("Gateway", "my-gateway", section="my-listener")], listener_rules),
    ]
    builder = gateway_api_topology_builder(policy_kinds=[TEST_POLICY])
    return builder.build(store_from(docs, Converter([policy_kind(strategy)])))


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class TestStrategies:
    def test_none_on_either_side(self) -> None:
        p = _policy("p", {"a": 1})
        for strategy in STRATEGIES.values():
            assert strategy(None, p) is p
            assert strategy(p, None) is p
            assert strategy(None, None) is None

    def test_atomic_defaults_lower_replaces_higher(self) -> None:
        merged = atomic_defaults(_policy("higher", {"a": 1, "b": 1}), _policy("lower", {"b": 2}))
        assert _rules(merged) == {"b": (2, "lower")}

    def test_atomic_defaults_empty_lower_keeps_higher(self) -> None:
        merged = atomic_defaults(_policy("higher", {"a": 1}), _policy("lower", {}))
        assert _rules(merged) == {"a": (1, "higher")}

    def test_atomic_overrides_higher_wins(self) -> None:
        merged = atomic_overrides(_policy("higher", {"a": 1}), _policy("lower", {"b": 2}))
        assert _rules(merged) == {"a": (1, "higher")}

    def test_atomic_overrides_empty_higher_keeps_lower(self) -> None:
        merged = atomic_overrides(_policy("higher", {}), _policy("lower", {"b": 2}))
        assert _rules(merged) == {"b": (2, "lower")}

    def test_merge_defaults_lower_overrides_keys_it_sets(self) -> None:
        merged = merge_defaults(_policy("higher", {"a": 1, "b": 1}), _policy("lower", {"b": 2, "c": 2}))
        assert _rules(merged) == {"a": (1, "higher"), "b": (2, "lower"), "c": (2, "lower")}

    def test_merge_overrides_higher_keys_win(self) -> None:
        merged = merge_overrides(_policy("higher", {"a": 1, "b": 1}), _policy("lower", {"b": 2, "c": 2}))
        assert _rules(merged) == {"a": (1, "higher"), "b": (1, "higher"), "c": (2, "lower")}

    def test_merge_does_not_mutate_inputs(self) -> None:
        higher, lower = _policy("higher", {"a": 1}), _policy("lower", {"b": 2})
        merge_defaults(higher, lower)
        assert _rules(higher) == {"a": (1, "higher")}
        assert _rules(lower) == {"b": (2, "lower")}

    def test_policy_merge_treats_argument_as_higher(self) -> None:
        higher = _policy("higher", {"a": 1}, strategy="merge")
        lower = _policy("lower", {"a": 2}, strategy="merge")
        assert _rules(lower.merge(higher)) == {"a": (2, "lower")}

    def test_merged_policy_keeps_lower_identity(self) -> None:
        merged = merge_defaults(_policy("higher", {"a": 1}), _policy("lower", {}))
        assert isinstance(merged, GenericPolicy)
        assert merged.name == "lower"

    def test_strategy_by_name(self) -> None:
        assert strategy_by_name("atomic") is atomic_defaults
        assert strategy_by_name("merge-overrides") is merge_overrides

    def test_strategy_by_name_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown merge strategy"):
            strategy_by_name("random")


# ---------------------------------------------------------------------------
# Effective policy for a path
# ---------------------------------------------------------------------------


class TestEffectivePolicyForPath:
    def test_atomic_listener_policy_replaces_gateway_policy(self) -> None:
        topology = _topology("atomic", {"a": 1, "b": 1}, {"b": 2})
        [path] = topology.paths()
        assert _rules(effective_policy_for_path(path, TEST_POLICY)) == {"b": (2, "listener-policy")}

    def test_merge_listener_policy_overrides_gateway_defaults(self) -> None:
        topology = _topology("merge", {"a": 1, "b": 1}, {"b": 2})
        [path] = topology.paths()
        assert _rules(effective_policy_for_path(path, TEST_POLICY)) == {
            "a": (1, "gw-policy"),
            "b": (2, "listener-policy"),
        }

    def test_atomic_overrides_gateway_policy_wins(self) -> None:
        topology = _topology("atomic-overrides", {"a": 1, "b": 1}, {"b": 2, "c": 3})
        [path] = topology.paths()
        assert _rules(effective_policy_for_path(path, TEST_POLICY)) == {"a": (1, "gw-policy"), "b": (1, "gw-policy")}

    def test_merge_overrides_gateway_keys_win(self) -> None:
        topology = _topology("merge-overrides", {"a": 1, "b": 1}, {"b": 2, "c": 3})
        [path] = topology.paths()
        assert _rules(effective_policy_for_path(path, TEST_POLICY)) == {
            "a": (1, "gw-policy"),
            "b": (1, "gw-policy"),
            "c": (3, "listener-policy"),
        }

    def test_no_policy_on_path_is_absent(self) -> None:
        topology = _topology("atomic", {"a": 1}, {})
        [path] = topology.paths()
        assert effective_policy_for_path(path, GroupKind("other.io", "OtherPolicy")) is None

    def test_empty_path(self) -> None:
        assert effective_policy_for_path([], TEST_POLICY) is None

    def test_deleting_a_policy_changes_the_effective_policy(self) -> None:
        docs = [
            make_gateway_class(),
            make_gateway(),
            make_http_route(),
            make_service(),
            make_policy("gw-policy", [target_ref("Gateway", "my-gateway")], {"a": 1}),
            make_policy("route-policy", [target_ref("HTTPRoute", "my-http-route")], {"a": 2}),
        ]
        builder = gateway_api_topology_builder(policy_kinds=[TEST_POLICY])
        store = store_from(docs)
        [path] = builder.build(store).paths()
        assert _rules(effective_policy_for_path(path, TEST_POLICY)) == {"a": (2, "route-policy")}

        store.delete(TEST_POLICY, "my-namespace/route-policy")
        [path] = builder.build(store).paths()
        assert _rules(effective_policy_for_path(path, TEST_POLICY)) == {"a": (1, "gw-policy")}

        store.delete(TEST_POLICY, "my-namespace/gw-policy")
        [path] = builder.build(store).paths()
        assert effective_policy_for_path(path, TEST_POLICY) is None

    def test_selector_by_type_and_predicate(self) -> None:
        topology = _topology("atomic", {"a": 1}, {"b": 2})
        [path] = topology.paths()
        by_type = effective_policy_for_path(path, GenericPolicy)
        by_predicate = effective_policy_for_path(path, lambda p: p.name == "gw-policy")
        assert _rules(by_type) == {"b": (2, "listener-policy")}
        assert _rules(by_predicate) == {"a": (1, "gw-policy")}


class TestTieBreak:
    def test_ordered_by_namespace_then_name(self) -> None:
        node = _targetable()
        node.set_policies([_policy("b", {}), _policy("a", {}, namespace="z"), _policy("a", {})])
        ordered = ordered_policies(node, TEST_POLICY)
        assert [(p.namespace, p.name) for p in ordered] == [
            ("my-namespace", "a"),
            ("my-namespace", "b"),
            ("z", "a"),
        ]

    def test_atomic_peers_later_name_wins(self) -> None:
        node = _targetable()
        node.set_policies([_policy("b", {"x": "b"}), _policy("a", {"x": "a"})])
        assert _rules(effective_policy_for_path([node], TEST_POLICY)) == {"x": ("b", "b")}

    def test_merge_peers_combine(self) -> None:
        node = _targetable()
        node.set_policies([_policy("b", {"x": "b"}, "merge"), _policy("a", {"x": "a", "y": "a"}, "merge")])
        assert _rules(effective_policy_for_path([node], TEST_POLICY)) == {"x": ("b", "b"), "y": ("a", "a")}


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

_rule_maps = st.dictionaries(st.sampled_from(["a", "b", "c", "d"]), st.integers(0, 9), max_size=4)
_strategy_names = st.sampled_from(sorted(STRATEGIES))


class TestMergeProperties:
    @given(strategy=_strategy_names, rules=st.lists(_rule_maps, min_size=1, max_size=5), data=st.data())
    @settings(max_examples=50, deadline=None)
    def test_attachment_order_does_not_matter(self, strategy: str, rules: list[dict[str, int]], data: Any) -> None:
        policies = [_policy(f"p{i}", r, strategy) for i, r in enumerate(rules)]
        shuffled = data.draw(st.permutations(policies))
        first, second = _targetable(), _targetable()
        first.set_policies(policies)
        second.set_policies(list(shuffled))
        assert _rules(effective_policy_for_path([first], TEST_POLICY)) == _rules(
            effective_policy_for_path([second], TEST_POLICY)
        )

    @given(strategy=_strategy_names, a=_rule_maps, b=_rule_maps, c=_rule_maps)
    @settings(max_examples=50, deadline=None)
    def test_strategies_are_associative(self, strategy: str, a: dict, b: dict, c: dict) -> None:
        merge = strategy_by_name(strategy)
        pa, pb, pc = _policy("a", a, strategy), _policy("b", b, strategy), _policy("c", c, strategy)
        assert _rules(merge(merge(pa, pb), pc)) == _rules(merge(pa, merge(pb, pc)))

    @given(strategy=_strategy_names, rules=st.lists(_rule_maps, min_size=1, max_size=4))
    @settings(max_examples=50, deadline=None)
    def test_incremental_fold_matches_single_fold(self, strategy: str, rules: list[dict[str, int]]) -> None:
        policies = [_policy(f"p{i}", r, strategy) for i, r in enumerate(rules)]
        path = []
        for i, policy in enumerate(policies):
            node = _targetable(f"gw-{i}")
            node.set_policies([policy])
            path.append(node)
        merge = strategy_by_name(strategy)
        single = reduce(merge, policies)
        assert _rules(effective_policy_for_path(path, TEST_POLICY)) == _rules(single)
