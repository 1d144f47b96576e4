"""kubeapply - Apply Kubernetes manifest bundles to a live cluster."""

from .config import Settings, get_settings
from .exceptions import (
    ApplyConflictError,
    ApplyError,
    ApplyTransientError,
    ApplyValidationError,
    BundleParseError,
    ClusterSessionError,
    DeleteNotFoundError,
    DeploymentNotFoundError,
    EmptyBundleError,
    EndpointResolutionError,
    InvalidTargetError,
    KubeApplyError,
    NoClusterCredentials,
    ResourceNotDeletableError,
    SecurityCheckError,
)
from .manifest import ManifestBundle
from .models import (
    ApplyAction,
    ApplyOutcome,
    BatchOperation,
    BatchReport,
    ClusterCredentials,
    DeploymentRecordView,
    DeploymentStatus,
    ManifestDocument,
    ResourceEndpoint,
)
from .reconciler import DELETABLE_KINDS, Reconciler
from .resolver import resolve_endpoint
from .resources import ResourceClient
from .security import SecurityCheck, SecurityReport, check_bundle
from .service import DeploymentResult, DeploymentService
from .session import ClusterSession, ClusterSessionFactory

__version__ = "0.1.0"

__all__ = [
    # Reconciliation
    "Reconciler",
    "DELETABLE_KINDS",
    "ManifestBundle",
    "resolve_endpoint",
    "ResourceClient",
    # Sessions
    "ClusterSession",
    "ClusterSessionFactory",
    # Deployment lifecycle
    "DeploymentService",
    "DeploymentResult",
    # Security checks
    "check_bundle",
    "SecurityCheck",
    "SecurityReport",
    # Models
    "ApplyAction",
    "ApplyOutcome",
    "BatchOperation",
    "BatchReport",
    "ClusterCredentials",
    "DeploymentRecordView",
    "DeploymentStatus",
    "ManifestDocument",
    "ResourceEndpoint",
    # Errors
    "KubeApplyError",
    "BundleParseError",
    "EmptyBundleError",
    "EndpointResolutionError",
    "InvalidTargetError",
    "ClusterSessionError",
    "NoClusterCredentials",
    "ApplyError",
    "ApplyConflictError",
    "ApplyTransientError",
    "ApplyValidationError",
    "DeleteNotFoundError",
    "ResourceNotDeletableError",
    "DeploymentNotFoundError",
    "SecurityCheckError",
    # Configuration
    "Settings",
    "get_settings",
]
