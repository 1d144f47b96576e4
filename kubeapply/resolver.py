"""Resolve a (kind, apiVersion) pair to its REST endpoint.

Built-in kinds live under per-group typed endpoints (``/api/v1`` for the
core group, ``/apis/<group>/<version>`` otherwise). Extension kinds are
served through the same group/version/plural shape but are flagged as
custom resources, since their plural form cannot be discovered offline.
"""

from typing import Optional

from .exceptions import EndpointResolutionError
from .models import ResourceEndpoint

CORE_GROUP = ""

# Exact group names; "gateway.networking.k8s.io" is an extension, not networking.k8s.io.
BUILTIN_GROUPS = frozenset(
    {
        CORE_GROUP,
        "apps",
        "batch",
        "networking.k8s.io",
        "rbac.authorization.k8s.io",
        "autoscaling",
        "policy",
        "storage.k8s.io",
        "node.k8s.io",
        "scheduling.k8s.io",
        "discovery.k8s.io",
        "coordination.k8s.io",
        "apiextensions.k8s.io",
        "admissionregistration.k8s.io",
        "certificates.k8s.io",
    }
)

PLURAL_OVERRIDES = {
    # built-in
    "Endpoints": "endpoints",
    "Ingress": "ingresses",
    "IngressClass": "ingressclasses",
    "NetworkPolicy": "networkpolicies",
    "PodSecurityPolicy": "podsecuritypolicies",
    "PriorityClass": "priorityclasses",
    "RuntimeClass": "runtimeclasses",
    "StorageClass": "storageclasses",
    "VolumeAttributesClass": "volumeattributesclasses",
    # gateway API and envoy gateway
    "HTTPRoute": "httproutes",
    "GRPCRoute": "grpcroutes",
    "TCPRoute": "tcproutes",
    "TLSRoute": "tlsroutes",
    "GatewayClass": "gatewayclasses",
    "BackendTrafficPolicy": "backendtrafficpolicies",
    "ClientTrafficPolicy": "clienttrafficpolicies",
    "SecurityPolicy": "securitypolicies",
    "EnvoyProxy": "envoyproxies",
    # cert-manager
    "Certificate": "certificates",
    "ClusterIssuer": "clusterissuers",
    # velero
    "Schedule": "schedules",
}

CLUSTER_SCOPED_KINDS = frozenset(
    {
        "Namespace",
        "Node",
        "PersistentVolume",
        "ClusterRole",
        "ClusterRoleBinding",
        "StorageClass",
        "RuntimeClass",
        "IngressClass",
        "PriorityClass",
        "VolumeAttributesClass",
        "CustomResourceDefinition",
        "MutatingWebhookConfiguration",
        "ValidatingWebhookConfiguration",
        "CertificateSigningRequest",
        "PodSecurityPolicy",
        "ClusterIssuer",
        "GatewayClass",
    }
)


def split_api_version(api_version: Optional[str]) -> tuple[str, str]:
    """
    Split an apiVersion into (group, version).

    ``"v1"`` is the core group; a missing apiVersion is treated as ``"v1"``.
    """
    if not api_version:
        return CORE_GROUP, "v1"
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return CORE_GROUP, api_version


def pluralize(kind: str) -> str:
    """Get the resource plural for a kind."""
    return PLURAL_OVERRIDES.get(kind, f"{kind.lower()}s")


def resolve_endpoint(kind: str, api_version: Optional[str]) -> ResourceEndpoint:
    """
    Resolve the endpoint serving a kind.

    Args:
        kind: Object kind, e.g. ``Deployment``
        api_version: Object apiVersion, e.g. ``apps/v1``

    Returns:
        ResourceEndpoint

    Raises:
        EndpointResolutionError: If kind is missing
    """
    if not kind or not isinstance(kind, str):
        raise EndpointResolutionError("cannot resolve an endpoint without a kind")

    group, version = split_api_version(api_version)
    namespaced = kind not in CLUSTER_SCOPED_KINDS

    if kind == "Namespace":
        return ResourceEndpoint(
            kind=kind,
            api_group=CORE_GROUP,
            api_version="v1",
            plural="namespaces",
            namespaced=False,
            is_custom_resource=False,
        )

    if group in BUILTIN_GROUPS and (group or version == "v1"):
        return ResourceEndpoint(
            kind=kind,
            api_group=group,
            api_version=version,
            plural=pluralize(kind),
            namespaced=namespaced,
            is_custom_resource=False,
        )

    if group:
        return ResourceEndpoint(
            kind=kind,
            api_group=group,
            api_version=version,
            plural=pluralize(kind),
            namespaced=namespaced,
            is_custom_resource=True,
        )

    return ResourceEndpoint(
        kind=kind,
        api_group=CORE_GROUP,
        api_version="v1",
        plural=pluralize(kind),
        namespaced=namespaced,
        is_custom_resource=False,
    )
