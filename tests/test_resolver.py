"""Tests for endpoint resolution."""

import pytest

from kubeapply.exceptions import EndpointResolutionError, InvalidTargetError
from kubeapply.models import ResourceEndpoint
from kubeapply.resolver import pluralize, resolve_endpoint, split_api_version


class TestResolveEndpoint:
    """Tests for resolve_endpoint."""

    def test_deployment_is_builtin_apps(self):
        endpoint = resolve_endpoint("Deployment", "apps/v1")

        assert endpoint.api_group == "apps"
        assert endpoint.api_version == "v1"
        assert endpoint.plural == "deployments"
        assert endpoint.namespaced is True
        assert endpoint.is_custom_resource is False

    def test_httproute_is_custom_resource(self):
        endpoint = resolve_endpoint("HTTPRoute", "gateway.networking.k8s.io/v1")

        assert endpoint.api_group == "gateway.networking.k8s.io"
        assert endpoint.plural == "httproutes"
        assert endpoint.namespaced is True
        assert endpoint.is_custom_resource is True

    def test_networking_prefix_alone_is_not_builtin(self):
        assert resolve_endpoint("NetworkPolicy", "networking.k8s.io/v1").is_custom_resource is False
        assert resolve_endpoint("GRPCRoute", "gateway.networking.k8s.io/v1").is_custom_resource is True

    def test_namespace_is_cluster_scoped_core(self):
        endpoint = resolve_endpoint("Namespace", "v1")

        assert endpoint.api_group == ""
        assert endpoint.plural == "namespaces"
        assert endpoint.namespaced is False

    def test_namespace_ignores_declared_version(self):
        endpoint = resolve_endpoint("Namespace", "v2")

        assert endpoint.api_version == "v1"

    def test_core_service(self):
        endpoint = resolve_endpoint("Service", "v1")

        assert endpoint.group_version == "v1"
        assert endpoint.plural == "services"

    def test_cluster_role_is_cluster_scoped(self):
        endpoint = resolve_endpoint("ClusterRole", "rbac.authorization.k8s.io/v1")

        assert endpoint.namespaced is False
        assert endpoint.is_custom_resource is False
        assert endpoint.plural == "clusterroles"

    @pytest.mark.parametrize(
        "kind,api_version,plural",
        [
            ("NetworkPolicy", "networking.k8s.io/v1", "networkpolicies"),
            ("Ingress", "networking.k8s.io/v1", "ingresses"),
            ("Certificate", "cert-manager.io/v1", "certificates"),
            ("Schedule", "velero.io/v1", "schedules"),
            ("BackendTrafficPolicy", "gateway.envoyproxy.io/v1alpha1", "backendtrafficpolicies"),
            ("Widget", "example.com/v1beta1", "widgets"),
        ],
    )
    def test_plurals(self, kind, api_version, plural):
        assert resolve_endpoint(kind, api_version).plural == plural

    def test_unknown_core_version_falls_back_to_v1(self):
        endpoint = resolve_endpoint("ConfigMap", "v2")

        assert endpoint.api_group == ""
        assert endpoint.api_version == "v1"
        assert endpoint.is_custom_resource is False

    def test_missing_api_version_is_core_v1(self):
        assert resolve_endpoint("ConfigMap", None).group_version == "v1"

    @pytest.mark.parametrize("kind", ["", None])
    def test_missing_kind_raises(self, kind):
        with pytest.raises(EndpointResolutionError):
            resolve_endpoint(kind, "v1")


class TestEndpointPaths:
    """Tests for REST path construction."""

    def test_core_namespaced_paths(self):
        endpoint = resolve_endpoint("Service", "v1")

        assert endpoint.collection_path("shop") == "/api/v1/namespaces/shop/services"
        assert endpoint.item_path("shop", "web") == "/api/v1/namespaces/shop/services/web"

    def test_group_namespaced_paths(self):
        endpoint = resolve_endpoint("HTTPRoute", "gateway.networking.k8s.io/v1")

        assert endpoint.item_path("shop", "web-route") == (
            "/apis/gateway.networking.k8s.io/v1/namespaces/shop/httproutes/web-route"
        )

    def test_cluster_scoped_paths_ignore_namespace(self):
        endpoint = resolve_endpoint("Namespace", "v1")

        assert endpoint.collection_path("shop") == "/api/v1/namespaces"
        assert endpoint.item_path(None, "shop") == "/api/v1/namespaces/shop"

    @pytest.mark.parametrize("namespace", [None, ""])
    def test_namespaced_path_requires_namespace(self, namespace):
        endpoint = ResourceEndpoint(kind="Service", plural="services")

        with pytest.raises(InvalidTargetError):
            endpoint.collection_path(namespace)

    @pytest.mark.parametrize("namespace", ["..", "kube-system/services", "Shop", "shop\n", "a" * 64])
    def test_malformed_namespace_is_rejected(self, namespace):
        with pytest.raises(InvalidTargetError):
            resolve_endpoint("Service", "v1").collection_path(namespace)

    @pytest.mark.parametrize("name", ["", ".", "..", "../../shop", "web/status", "web%2F.."])
    def test_name_must_stay_one_segment(self, name):
        with pytest.raises(InvalidTargetError):
            resolve_endpoint("Service", "v1").item_path("shop", name)

    def test_name_is_percent_encoded(self):
        endpoint = resolve_endpoint("ClusterRole", "rbac.authorization.k8s.io/v1")

        assert endpoint.item_path(None, "system:reader") == (
            "/apis/rbac.authorization.k8s.io/v1/clusterroles/system%3Areader"
        )


class TestHelpers:
    def test_split_api_version(self):
        assert split_api_version("apps/v1") == ("apps", "v1")
        assert split_api_version("v1") == ("", "v1")
        assert split_api_version("") == ("", "v1")

    def test_pluralize_default(self):
        assert pluralize("ConfigMap") == "configmaps"
