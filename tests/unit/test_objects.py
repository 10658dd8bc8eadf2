"""Tests for ClusterObject parsing, noise stripping and ResourceSelector paths."""

from __future__ import annotations

from kubemirror.models.objects import (
    LAST_APPLIED_ANNOTATION,
    NO_NAMESPACE,
    ClusterObject,
    ResourceSelector,
    TypeMeta,
    cache_key,
)


def _raw_with_noise() -> dict:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": "api",
            "namespace": "acme",
            "labels": {"app": "api"},
            "annotations": {
                LAST_APPLIED_ANNOTATION: '{"apiVersion":"apps/v1"}',
                "team": "payments",
            },
            "managedFields": [{"manager": "kubectl", "operation": "Apply"}],
            "creationTimestamp": "2024-05-01T10:00:00Z",
            "resourceVersion": "4711",
        },
        "spec": {"replicas": 3},
        "status": {"readyReplicas": 3},
    }


# ---------------------------------------------------------------------------
# ClusterObject
# ---------------------------------------------------------------------------


class TestClusterObject:
    def test_from_raw_reads_identity_and_types(self) -> None:
        obj = ClusterObject.from_raw(_raw_with_noise())
        assert obj.name == "api"
        assert obj.namespace == "acme"
        assert obj.types == TypeMeta("apps/v1", "Deployment")
        assert obj.data == {"spec": {"replicas": 3}, "status": {"readyReplicas": 3}}
        assert obj.labels == {"app": "api"}
        assert obj.creation_timestamp == "2024-05-01T10:00:00Z"
        assert obj.resource_version == "4711"

    def test_list_items_have_no_types(self) -> None:
        obj = ClusterObject.from_raw({"metadata": {"name": "web", "namespace": "default"}, "spec": {}})
        assert obj.types is None

    def test_partial_type_meta_is_treated_as_missing(self) -> None:
        obj = ClusterObject.from_raw({"kind": "Pod", "metadata": {"name": "web"}})
        assert obj.types is None

    def test_cluster_scoped_key_uses_sentinel(self) -> None:
        obj = ClusterObject.from_raw({"metadata": {"name": "node-1"}})
        assert obj.namespace is None
        assert obj.key == f"{NO_NAMESPACE}/node-1"

    def test_from_raw_does_not_alias_input(self) -> None:
        raw = _raw_with_noise()
        obj = ClusterObject.from_raw(raw)
        obj.metadata["labels"]["app"] = "changed"
        obj.data["spec"]["replicas"] = 0
        assert raw["metadata"]["labels"]["app"] == "api"
        assert raw["spec"]["replicas"] == 3

    def test_to_dict_restores_wire_shape(self) -> None:
        raw = _raw_with_noise()
        assert ClusterObject.from_raw(raw).to_dict() == raw


class TestStripNoise:
    def test_removes_last_applied_and_managed_fields(self) -> None:
        obj = ClusterObject.from_raw(_raw_with_noise()).strip_noise()
        assert LAST_APPLIED_ANNOTATION not in obj.annotations
        assert "managedFields" not in obj.metadata
        assert obj.annotations == {"team": "payments"}

    def test_noop_without_noise(self) -> None:
        obj = ClusterObject.from_raw({"metadata": {"name": "web", "namespace": "default"}})
        before = obj.copy()
        obj.strip_noise()
        assert obj == before

    def test_idempotent(self) -> None:
        once = ClusterObject.from_raw(_raw_with_noise()).strip_noise()
        twice = once.copy().strip_noise()
        assert once == twice


# ---------------------------------------------------------------------------
# Keys and selectors
# ---------------------------------------------------------------------------


class TestCacheKey:
    def test_namespaced(self) -> None:
        assert cache_key("acme", "api") == "acme/api"

    def test_missing_namespace(self) -> None:
        assert cache_key(None, "api") == "none/api"
        assert cache_key("", "api") == "none/api"


class TestResourceSelector:
    def test_group_namespaced_url(self) -> None:
        sel = ResourceSelector("apps", "v1", "Deployment", "deployments", "deploy", namespace="acme")
        assert sel.resource_url == "/apis/apps/v1/namespaces/acme/deployments"
        assert sel.api_version == "apps/v1"

    def test_core_all_namespaces_url(self) -> None:
        sel = ResourceSelector("", "v1", "Pod", "pods", "pod")
        assert sel.resource_url == "/api/v1/pods"
        assert sel.api_version == "v1"

    def test_selectors_joined(self) -> None:
        sel = ResourceSelector(
            "",
            "v1",
            "Pod",
            "pods",
            "pod",
            label_selectors=("app=web", "tier!=cache"),
            field_selectors=("status.phase=Running",),
        )
        assert sel.label_selector == "app=web,tier!=cache"
        assert sel.field_selector == "status.phase=Running"

    def test_no_selectors_are_none(self) -> None:
        sel = ResourceSelector("", "v1", "Pod", "pods", "pod")
        assert sel.label_selector is None
        assert sel.field_selector is None

    def test_key_distinguishes_filters(self) -> None:
        plain = ResourceSelector("", "v1", "Pod", "pods", "pod")
        labelled = ResourceSelector("", "v1", "Pod", "pods", "pod", label_selectors=("app=web",))
        assert plain.key != labelled.key
        assert plain.key == "/api/v1/pods"
