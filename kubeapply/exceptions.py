"""Exception types raised by kubeapply."""

from typing import Optional


class KubeApplyError(Exception):
    """Base class for all kubeapply errors."""

    pass


class BundleParseError(KubeApplyError):
    """Raised when a single manifest document cannot be used."""

    def __init__(self, message: str, index: Optional[int] = None):
        self.index = index
        self.message = message
        prefix = f"document {index}: " if index is not None else ""
        super().__init__(f"{prefix}{message}")


class EmptyBundleError(BundleParseError):
    """Raised when a bundle holds no usable document at all."""

    pass


class EndpointResolutionError(KubeApplyError):
    """Raised when a document cannot be routed to an API endpoint."""

    pass


class ClusterSessionError(KubeApplyError):
    """Raised when no usable cluster credentials can be found."""

    pass


NoClusterCredentials = ClusterSessionError


class ApplyError(KubeApplyError):
    """
    Base class for errors returned by a single cluster call.

    Attributes:
        status: HTTP status code, or None for transport failures
        reason: HTTP reason phrase or exception name
        message: Human readable message, taken from the API status body when present
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        self.message = message
        self.status = status
        self.reason = reason
        super().__init__(message)


class ApplyConflictError(ApplyError):
    """Raised when a create call finds the object already present."""

    pass


class ApplyTransientError(ApplyError):
    """Raised for failures that may succeed when tried again."""

    pass


class ApplyValidationError(ApplyError):
    """Raised when the cluster rejects the document itself."""

    pass


class DeleteNotFoundError(ApplyError):
    """Raised when a delete call finds nothing to delete."""

    pass


class ResourceNotDeletableError(KubeApplyError):
    """Raised when a kind may not be deleted on its own."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(
            f"{kind} resources are managed with the deployment and cannot be deleted individually"
        )


class DeploymentNotFoundError(KubeApplyError):
    """Raised when a deployment record is missing or owned by someone else."""

    pass


class SecurityCheckError(KubeApplyError):
    """Raised when a bundle fails security checks and blocking is enabled."""

    def __init__(self, report):
        self.report = report
        super().__init__(report.summary)


class InvalidTargetError(KubeApplyError):
    """Raised when a name or namespace cannot be placed in an API path."""

    pass
