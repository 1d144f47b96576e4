"""Data models for manifest reconciliation."""

import copy
import re
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from urllib.parse import quote
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .exceptions import InvalidTargetError

NAMESPACE_PATTERN = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?")
MAX_NAMESPACE_LENGTH = 63


def check_namespace(namespace: Optional[str]) -> str:
    """
    Require a DNS-1123 label usable as a namespace path segment.

    Raises:
        InvalidTargetError: If the namespace is empty or malformed
    """
    if not namespace:
        raise InvalidTargetError("no target namespace was given")
    if len(namespace) > MAX_NAMESPACE_LENGTH or not NAMESPACE_PATTERN.fullmatch(namespace):
        raise InvalidTargetError(f"invalid namespace {namespace!r}")
    return namespace


def check_name(name: Optional[str]) -> str:
    """
    Require an object name that stays a single path segment.

    Raises:
        InvalidTargetError: If the name is empty, a dot segment, or holds "/" or "%"
    """
    if not name or name in (".", ".."):
        raise InvalidTargetError(f"invalid object name {name!r}")
    if "/" in name or "%" in name:
        raise InvalidTargetError(f"object name {name!r} may not contain '/' or '%'")
    return name


class ApplyAction(str, Enum):
    """What happened to one document in a batch."""

    PENDING = "pending"
    CREATED = "created"
    PATCHED = "patched"
    DELETED = "deleted"
    SKIPPED = "skipped"
    FAILED = "failed"


class BatchOperation(str, Enum):
    """Direction of a batch."""

    APPLY = "apply"
    DELETE = "delete"


class DeploymentStatus(str, Enum):
    """Status stored in the deployment ledger."""

    PENDING = "pending"
    DEPLOYED = "deployed"
    PARTIAL = "partial"
    DELETED = "deleted"


class ManifestDocument(BaseModel):
    """One parsed Kubernetes object from a bundle."""

    index: int = Field(..., ge=1, description="1-based position in the bundle")
    api_version: str
    kind: str
    name: str
    namespace: Optional[str] = None
    body: dict[str, Any]

    @property
    def ref(self) -> str:
        """Short ``Kind/name`` reference."""
        return f"{self.kind}/{self.name}"

    def identity(self, default_namespace: Optional[str] = None) -> tuple[str, str, Optional[str]]:
        """Get the (kind, name, namespace) triple identifying the object."""
        if self.kind == "Namespace":
            return (self.kind, self.name, None)
        return (self.kind, self.name, self.namespace or default_namespace)

    def with_namespace(self, namespace: str) -> "ManifestDocument":
        """
        Return a copy with ``metadata.namespace`` filled in.

        Documents that already name a namespace are returned unchanged.
        """
        if self.namespace:
            return self
        body = copy.deepcopy(self.body)
        metadata = body.get("metadata") or {}
        metadata["namespace"] = namespace
        body["metadata"] = metadata
        return self.model_copy(update={"namespace": namespace, "body": body})


class ResourceEndpoint(BaseModel):
    """Wire-level routing information for one kind."""

    model_config = ConfigDict(frozen=True)

    kind: str
    api_group: str = ""
    api_version: str = "v1"
    plural: str
    namespaced: bool = True
    is_custom_resource: bool = False

    @property
    def group_version(self) -> str:
        """Get ``group/version``, or just the version for the core group."""
        if self.api_group:
            return f"{self.api_group}/{self.api_version}"
        return self.api_version

    def _base_path(self) -> str:
        if self.api_group:
            return f"/apis/{self.api_group}/{self.api_version}"
        return f"/api/{self.api_version}"

    def collection_path(self, namespace: Optional[str] = None) -> str:
        """
        Build the REST path of the resource collection.

        Args:
            namespace: Namespace for namespaced kinds; ignored otherwise

        Returns:
            Absolute API path

        Raises:
            InvalidTargetError: If a namespaced kind gets no usable namespace
        """
        if self.namespaced:
            namespace = check_namespace(namespace)
            return f"{self._base_path()}/namespaces/{namespace}/{self.plural}"
        return f"{self._base_path()}/{self.plural}"

    def item_path(self, namespace: Optional[str], name: str) -> str:
        """Build the REST path of a single named object."""
        segment = quote(check_name(name), safe="")
        return f"{self.collection_path(namespace)}/{segment}"


class ApplyOutcome(BaseModel):
    """Result of reconciling one document."""

    index: Optional[int] = None
    kind: str
    name: str
    namespace: Optional[str] = None
    action: ApplyAction = ApplyAction.PENDING
    error_detail: Optional[str] = None
    note: Optional[str] = None
    attempts: int = 0
    retryable: bool = False
    retried: bool = False

    @property
    def succeeded(self) -> bool:
        """Whether the outcome counts as a success."""
        if self.action in (ApplyAction.CREATED, ApplyAction.PATCHED, ApplyAction.DELETED):
            return True
        # A delete that found nothing is a success
        return self.action == ApplyAction.SKIPPED and self.error_detail is None

    def describe(self) -> str:
        """One line description for deployment logs."""
        location = f" ({self.namespace})" if self.namespace else ""
        line = f"{self.action.value.upper():8} {self.kind}/{self.name}{location}"
        if self.error_detail:
            line = f"{line}: {self.error_detail}"
        elif self.note:
            line = f"{line}: {self.note}"
        if self.retried:
            line = f"{line} [retried]"
        return line


class BatchReport(BaseModel):
    """Aggregated result of one apply or delete batch."""

    operation: BatchOperation
    namespace: str
    outcomes: list[ApplyOutcome] = Field(default_factory=list)
    retried: list[ApplyOutcome] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    @computed_field
    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @computed_field
    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes if o.action == ApplyAction.FAILED)

    @computed_field
    @property
    def skipped_count(self) -> int:
        return sum(
            1 for o in self.outcomes if o.action == ApplyAction.SKIPPED and not o.succeeded
        )

    @computed_field
    @property
    def status(self) -> DeploymentStatus:
        if self.failure_count == 0:
            return DeploymentStatus.DEPLOYED
        return DeploymentStatus.PARTIAL

    def failures(self) -> list[ApplyOutcome]:
        """Get the outcomes that ended as failures."""
        return [o for o in self.outcomes if o.action == ApplyAction.FAILED]

    def render_log(self) -> str:
        """Render a human readable deployment log."""
        verb = "Applying" if self.operation == BatchOperation.APPLY else "Deleting"
        lines = [f"=== {verb} {len(self.outcomes)} resources in {self.namespace} ==="]
        lines.extend(outcome.describe() for outcome in self.outcomes)
        lines.append("=== Summary ===")
        lines.append(f"Succeeded: {self.success_count}")
        if self.skipped_count:
            lines.append(f"Skipped: {self.skipped_count}")
        if self.failure_count:
            lines.append(f"Failed: {self.failure_count}")
        if self.retried:
            lines.append(f"Retried: {len(self.retried)}")
        lines.append(f"Status: {self.status.value}")
        return "\n".join(lines)


class ClusterCredentials(BaseModel):
    """Externally supplied credentials for one owner's cluster."""

    server_url: Optional[str] = None
    token: Optional[str] = None
    cluster_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        """Whether every field needed to connect is present."""
        return bool(self.server_url and self.token and self.cluster_id)


class DeploymentRecordView(BaseModel):
    """Read-only view of a ledger record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    name: str
    namespace: str
    manifest_bundle: str
    status: DeploymentStatus
    workloads_count: int = 0
    resources_count: int = 0
    message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None
