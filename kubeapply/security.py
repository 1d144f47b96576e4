"""Security checks for workload manifests before they are applied."""

import re
from enum import Enum
from typing import Any, Iterator, Optional

from pydantic import BaseModel, Field

from .manifest import ManifestBundle
from .models import ManifestDocument

SECRET_ENV_NAME = re.compile(r"^(password|secret|token|key|credential|api_key|apikey)", re.IGNORECASE)

REPLICATED_KINDS = frozenset({"Deployment", "ReplicaSet", "StatefulSet"})
LONG_RUNNING_KINDS = frozenset({"Pod", "Deployment", "ReplicaSet", "StatefulSet", "DaemonSet"})


class Severity(str, Enum):
    """Check severity."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class SecurityCheck(BaseModel):
    """One finding."""

    name: str
    severity: Severity
    message: str
    description: str
    resource: Optional[str] = None


class SecurityReport(BaseModel):
    """Findings for a whole bundle."""

    checks: list[SecurityCheck] = Field(default_factory=list)

    @property
    def errors(self) -> list[SecurityCheck]:
        return [c for c in self.checks if c.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[SecurityCheck]:
        return [c for c in self.checks if c.severity == Severity.WARNING]

    @property
    def infos(self) -> list[SecurityCheck]:
        return [c for c in self.checks if c.severity == Severity.INFO]

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def summary(self) -> str:
        if self.errors:
            return (
                f"Security check failed: {len(self.errors)} critical error(s) found. "
                "Fix these before deployment."
            )
        if self.warnings:
            return (
                f"Security check passed with {len(self.warnings)} warning(s). "
                "Review recommendations for production readiness."
            )
        return f"Security check passed with {len(self.infos)} info(s). All critical security checks passed."


def pod_spec(document: ManifestDocument) -> Optional[dict[str, Any]]:
    """
    Locate the pod spec inside a workload document.

    Returns:
        Pod spec mapping, or None for non-workload kinds
    """
    spec = document.body.get("spec") or {}
    if document.kind == "Pod":
        return spec
    if document.kind == "CronJob":
        spec = ((spec.get("jobTemplate") or {}).get("spec")) or {}
    if document.kind in ("Deployment", "ReplicaSet", "StatefulSet", "DaemonSet", "Job", "CronJob"):
        return ((spec.get("template") or {}).get("spec")) or {}
    return None


def _containers(spec: dict[str, Any]) -> Iterator[dict[str, Any]]:
    for container in spec.get("containers") or []:
        if isinstance(container, dict):
            yield container


def _image_checks(image: Optional[str], spec: dict[str, Any], ref: str) -> list[SecurityCheck]:
    checks = []
    if not image:
        checks.append(
            SecurityCheck(
                name="image-missing",
                severity=Severity.ERROR,
                message="Container image not specified",
                description="Every container must specify a valid image.",
                resource=ref,
            )
        )
        return checks

    repository, _, tag = image.rpartition(":") if ":" in image.split("/")[-1] else (image, "", "")
    if not tag or tag == "latest":
        checks.append(
            SecurityCheck(
                name="image-tag",
                severity=Severity.WARNING,
                message=f"Image {image} uses the 'latest' tag or none",
                description="Pin an explicit version tag so updates are deliberate.",
                resource=ref,
            )
        )

    first = repository.split("/")[0]
    if "/" not in repository or ("." not in first and ":" not in first and first != "localhost"):
        checks.append(
            SecurityCheck(
                name="image-registry",
                severity=Severity.WARNING,
                message=f"Image {image} does not name a registry",
                description="Pull from an explicit, trusted registry instead of the Docker Hub default.",
                resource=ref,
            )
        )

    if ("private" in repository or "internal" in repository) and not spec.get("imagePullSecrets"):
        checks.append(
            SecurityCheck(
                name="image-pull-secret",
                severity=Severity.ERROR,
                message=f"Private image {image} without imagePullSecrets",
                description="Configure imagePullSecrets to authenticate with private registries.",
                resource=ref,
            )
        )
    return checks


def _container_checks(
    container: dict[str, Any], spec: dict[str, Any], kind: str, ref: str
) -> list[SecurityCheck]:
    checks = _image_checks(container.get("image"), spec, ref)

    context = {**(spec.get("securityContext") or {}), **(container.get("securityContext") or {})}
    if not context.get("runAsNonRoot"):
        checks.append(
            SecurityCheck(
                name="security-context-user",
                severity=Severity.WARNING,
                message="Container may run as root user",
                description="Set securityContext.runAsNonRoot: true and a non-root user.",
                resource=ref,
            )
        )
    if not context.get("readOnlyRootFilesystem"):
        checks.append(
            SecurityCheck(
                name="security-context-filesystem",
                severity=Severity.WARNING,
                message="Root filesystem is writable",
                description="Set securityContext.readOnlyRootFilesystem: true.",
                resource=ref,
            )
        )
    if context.get("allowPrivilegeEscalation") is not False:
        checks.append(
            SecurityCheck(
                name="security-context-privilege",
                severity=Severity.WARNING,
                message="Privilege escalation is not explicitly disabled",
                description="Set securityContext.allowPrivilegeEscalation: false.",
                resource=ref,
            )
        )

    resources = container.get("resources") or {}
    limits = resources.get("limits") or {}
    requests = resources.get("requests") or {}
    if not limits.get("cpu") or not limits.get("memory"):
        checks.append(
            SecurityCheck(
                name="resource-limits",
                severity=Severity.WARNING,
                message="Container resource limits not fully defined",
                description="Define both CPU and memory limits to prevent resource exhaustion.",
                resource=ref,
            )
        )
    if not requests.get("cpu") or not requests.get("memory"):
        checks.append(
            SecurityCheck(
                name="resource-requests",
                severity=Severity.WARNING,
                message="Container resource requests not fully defined",
                description="Define both CPU and memory requests for proper scheduling.",
                resource=ref,
            )
        )

    if kind in LONG_RUNNING_KINDS:
        if not container.get("livenessProbe"):
            checks.append(
                SecurityCheck(
                    name="liveness-probe",
                    severity=Severity.WARNING,
                    message="Liveness probe not configured",
                    description="Configure a liveness probe to restart unhealthy containers.",
                    resource=ref,
                )
            )
        if not container.get("readinessProbe"):
            checks.append(
                SecurityCheck(
                    name="readiness-probe",
                    severity=Severity.WARNING,
                    message="Readiness probe not configured",
                    description="Configure a readiness probe so traffic only reaches ready pods.",
                    resource=ref,
                )
            )

    for env in container.get("env") or []:
        if not isinstance(env, dict):
            continue
        name = env.get("name") or ""
        value = env.get("value")
        if SECRET_ENV_NAME.match(name) and isinstance(value, str) and value:
            checks.append(
                SecurityCheck(
                    name="hardcoded-secret",
                    severity=Severity.ERROR,
                    message=f"Hardcoded secret detected in environment variable: {name}",
                    description="Reference a Secret with valueFrom.secretKeyRef instead of a literal value.",
                    resource=ref,
                )
            )
    return checks


def check_document(document: ManifestDocument) -> list[SecurityCheck]:
    """
    Run every check against one document.

    Non-workload documents produce no findings.
    """
    spec = pod_spec(document)
    if spec is None:
        return []

    ref = document.ref
    checks: list[SecurityCheck] = []
    for container in _containers(spec):
        checks.extend(_container_checks(container, spec, document.kind, ref))

    if not spec.get("serviceAccountName") and not spec.get("serviceAccount"):
        checks.append(
            SecurityCheck(
                name="service-account",
                severity=Severity.INFO,
                message="Using default service account",
                description="Use a dedicated service account with least-privilege RBAC.",
                resource=ref,
            )
        )

    if document.kind in REPLICATED_KINDS:
        replicas = (document.body.get("spec") or {}).get("replicas", 1)
        if not isinstance(replicas, int) or replicas < 2:
            checks.append(
                SecurityCheck(
                    name="replica-count",
                    severity=Severity.WARNING,
                    message="Single replica configured - no high availability",
                    description="Run at least 2 replicas with a pod disruption budget in production.",
                    resource=ref,
                )
            )
    return checks


def check_bundle(bundle: ManifestBundle) -> SecurityReport:
    """Run security checks over every workload in a bundle."""
    report = SecurityReport()
    for document in bundle:
        report.checks.extend(check_document(document))
    return report
