"""Unit tests for document <-> typed object conversion."""

from __future__ import annotations

import pytest
from factories import (
    TEST_POLICY,
    make_backend_tls_policy,
    make_gateway,
    make_http_route,
    make_policy,
    make_reference_grant,
    make_service,
    policy_kind,
    target_ref,
)

from kubepolicy.apis import core, gateway
from kubepolicy.apis.convert import ConversionError, Converter, group_kind_of
from kubepolicy.apis.meta import UnstructuredResource
from kubepolicy.machinery.merge import merge_defaults
from kubepolicy.machinery.objects import GroupKind
from kubepolicy.machinery.policies import BackendTLSPolicy, GenericPolicy

# ---------------------------------------------------------------------------
# group_kind_of
# ---------------------------------------------------------------------------


class TestGroupKindOf:
    def test_grouped_api_version(self) -> None:
        assert group_kind_of(make_gateway()) == gateway.GATEWAY

    def test_core_api_version(self) -> None:
        assert group_kind_of(make_service()) == core.SERVICE

    def test_missing_kind_raises(self) -> None:
        with pytest.raises(ConversionError, match="missing apiVersion or kind"):
            group_kind_of({"apiVersion": "v1", "metadata": {"name": "x"}})

    def test_missing_api_version_raises(self) -> None:
        with pytest.raises(ConversionError):
            group_kind_of({"kind": "Service", "metadata": {"name": "x"}})


# ---------------------------------------------------------------------------
# from_document
# ---------------------------------------------------------------------------


class TestFromDocument:
    def test_gateway_becomes_typed_model(self) -> None:
        gw = Converter().from_document(make_gateway("gw-1"))
        assert isinstance(gw, gateway.Gateway)
        assert gw.name == "gw-1"
        assert gw.namespace == "my-namespace"
        assert gw.spec.gateway_class_name == "my-gateway-class"
        assert [listener.name for listener in gw.spec.listeners] == ["my-listener"]

    def test_route_parent_refs_get_gateway_defaults(self) -> None:
        route = Converter().from_document(make_http_route())
        ref = route.spec.parent_refs[0]
        assert ref.group == gateway.GROUP
        assert ref.kind == "Gateway"
        assert ref.section_name is None

    def test_backend_refs_default_to_core_services(self) -> None:
        route = Converter().from_document(make_http_route())
        ref = route.spec.rules[0].backend_refs[0]
        assert (ref.group, ref.kind, ref.name) == ("", "Service", "my-service")

    def test_reference_grant_from_alias(self) -> None:
        grant = Converter().from_document(make_reference_grant("rg", "infra", "apps"))
        assert isinstance(grant, gateway.ReferenceGrant)
        assert grant.spec.from_[0].namespace == "apps"

    def test_backend_tls_policy_is_typed_policy(self) -> None:
        policy = Converter().from_document(make_backend_tls_policy("tls", "my-service", section="http"))
        assert isinstance(policy, BackendTLSPolicy)
        assert [ref.locator for ref in policy.target_refs()] == ["service:my-namespace/my-service#http"]
        assert set(policy.rules()) == {"validation"}

    def test_registered_policy_kind(self) -> None:
        converter = Converter([policy_kind("merge")])
        doc = make_policy("p", [target_ref("Gateway", "gw")], rules={"limit": 10})
        policy = converter.from_document(doc)
        assert isinstance(policy, GenericPolicy)
        assert policy.group_kind == TEST_POLICY
        assert policy.merge_strategy() is merge_defaults
        assert policy.rules()["limit"].spec == 10
        assert policy.rules()["limit"].source == "testpolicy.test.kubepolicy.io:my-namespace/p"

    def test_unregistered_kind_is_unstructured(self) -> None:
        doc = {"apiVersion": "example.com/v1", "kind": "Widget", "metadata": {"name": "w"}, "spec": {"a": 1}}
        obj = Converter().from_document(doc)
        assert isinstance(obj, UnstructuredResource)
        assert obj.group_kind == GroupKind("example.com", "Widget")
        assert obj.spec == {"a": 1}

    def test_unknown_fields_are_preserved(self) -> None:
        doc = make_gateway()
        doc["spec"]["addresses"] = [{"value": "10.0.0.1"}]
        gw = Converter().from_document(doc)
        assert Converter.to_document(gw)["spec"]["addresses"] == [{"value": "10.0.0.1"}]

    def test_missing_name_raises(self) -> None:
        doc = make_gateway()
        del doc["metadata"]["name"]
        with pytest.raises(ConversionError, match="missing metadata.name"):
            Converter().from_document(doc)

    def test_invalid_field_type_raises(self) -> None:
        doc = make_gateway()
        doc["spec"]["listeners"] = [{"name": "l", "port": "not-a-port", "protocol": "HTTP"}]
        with pytest.raises(ConversionError) as exc_info:
            Converter().from_document(doc)
        assert exc_info.value.kind == "Gateway.gateway.networking.k8s.io"
        assert exc_info.value.name == "my-gateway"
        assert "port" in exc_info.value.reason

    def test_missing_required_spec_raises(self) -> None:
        doc = make_gateway()
        del doc["spec"]
        with pytest.raises(ConversionError):
            Converter().from_document(doc)

    def test_non_mapping_raises(self) -> None:
        with pytest.raises(ConversionError, match="expected a mapping"):
            Converter().from_document(["not", "a", "document"])  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# to_document
# ---------------------------------------------------------------------------


class TestToDocument:
    def test_camel_case_aliases(self) -> None:
        doc = Converter.to_document(Converter().from_document(make_gateway()))
        assert doc["spec"]["gatewayClassName"] == "my-gateway-class"
        assert doc["apiVersion"] == "gateway.networking.k8s.io/v1"

    def test_none_fields_are_dropped(self) -> None:
        doc = Converter.to_document(Converter().from_document(make_http_route()))
        assert "sectionName" not in doc["spec"]["parentRefs"][0]

    def test_generic_policy_converts_through_its_resource(self) -> None:
        converter = Converter([policy_kind()])
        policy = converter.from_document(make_policy("p", [target_ref("Gateway", "gw")]))
        doc = Converter.to_document(policy)
        assert doc["kind"] == "TestPolicy"
        assert doc["spec"]["targetRefs"][0]["name"] == "gw"

    def test_non_model_raises(self) -> None:
        with pytest.raises(ConversionError):
            Converter.to_document(object())
