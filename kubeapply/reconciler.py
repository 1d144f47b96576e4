"""Converge a manifest bundle onto a live cluster."""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional, Union

from kubernetes.client import ApiClient

from .config import Settings, get_settings
from .exceptions import (
    ApplyConflictError,
    ApplyError,
    ApplyTransientError,
    DeleteNotFoundError,
    EmptyBundleError,
    EndpointResolutionError,
    InvalidTargetError,
    ResourceNotDeletableError,
)
from .manifest import ManifestBundle, RejectedDocument
from .models import (
    ApplyAction,
    ApplyOutcome,
    BatchOperation,
    BatchReport,
    ManifestDocument,
    check_name,
    check_namespace,
)
from .resolver import resolve_endpoint
from .resources import ResourceClient
from .session import ClusterSession

logger = logging.getLogger(__name__)

# Kinds end users may delete one at a time. Namespace, RBAC, network
# policy, certificates and backup schedules go only with the deployment.
DELETABLE_KINDS = {
    "Pod": "v1",
    "Deployment": "apps/v1",
    "ReplicaSet": "apps/v1",
    "StatefulSet": "apps/v1",
    "Job": "batch/v1",
    "CronJob": "batch/v1",
    "Service": "v1",
    "HTTPRoute": "gateway.networking.k8s.io/v1",
}

NON_RETRYABLE_MARKERS = (
    "field is immutable",
    "is invalid",
    "invalid value",
    "unknown field",
    "cannot unmarshal",
    "badrequest",
)

CANCELLED = "cancelled"


def load_bundle(bundle: Union[str, ManifestBundle]) -> ManifestBundle:
    """
    Parse bundle text if needed and require at least one usable document.

    Raises:
        EmptyBundleError: If no document in the bundle is usable
    """
    if not isinstance(bundle, ManifestBundle):
        bundle = ManifestBundle.parse(bundle)
    if not bundle:
        raise EmptyBundleError(
            f"bundle has no usable documents ({len(bundle.rejected)} rejected)"
        )
    return bundle


def is_retryable(error: Exception) -> bool:
    """Whether a failed create may be tried again in the retry pass."""
    if not isinstance(error, ApplyTransientError):
        return False
    message = str(error).lower()
    return not any(marker in message for marker in NON_RETRYABLE_MARKERS)


class Reconciler:
    """
    Applies and deletes manifest bundles one document at a time.

    Requests are issued sequentially in bundle order: document N is sent
    only after document N-1 has an outcome. Individual failures are
    recorded in the report and never abort the batch.
    """

    def __init__(
        self,
        session: Union[ClusterSession, ApiClient],
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
        ensure_namespace: Optional[bool] = None,
    ):
        """
        Initialize reconciler.

        Args:
            session: Cluster session (or a bare API client) for this batch
            settings: Library settings
            sleep: Function used for the retry backoff
            ensure_namespace: Create the target namespace if the bundle does not;
                defaults to the ``ensure_namespace`` setting
        """
        self.settings = settings or get_settings()
        api_client = session.api_client if isinstance(session, ClusterSession) else session
        self.resources = ResourceClient(api_client, self.settings.request_timeout_seconds)
        self.sleep = sleep
        self.ensure_namespace = (
            self.settings.ensure_namespace if ensure_namespace is None else ensure_namespace
        )

    def apply_batch(
        self,
        bundle: Union[str, ManifestBundle],
        namespace: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchReport:
        """
        Create or patch every document in bundle order.

        Args:
            bundle: Bundle text or parsed bundle
            namespace: Namespace for namespaced documents that name none
            cancel_event: Checked between documents; remaining documents are skipped once set

        Returns:
            BatchReport with one outcome per document

        Raises:
            EmptyBundleError: If the bundle holds no usable document
            InvalidTargetError: If namespace is empty or malformed
        """
        bundle = load_bundle(bundle)
        check_namespace(namespace)
        report = BatchReport(operation=BatchOperation.APPLY, namespace=namespace)
        logger.info(f"Applying {len(bundle)} resources to namespace {namespace}")

        if self.ensure_namespace and not bundle.has_namespace(namespace):
            self._ensure_namespace(namespace)

        queued: list[tuple[int, ManifestDocument]] = []
        cancelled = False

        for entry in _in_order(bundle):
            if isinstance(entry, RejectedDocument):
                report.outcomes.append(entry.to_outcome())
                continue

            if cancelled or (cancel_event is not None and cancel_event.is_set()):
                cancelled = True
                report.outcomes.append(self._cancelled(entry, namespace))
                continue

            outcome = self._new_outcome(entry, namespace)
            error = self._apply_document(entry, namespace, outcome)
            report.outcomes.append(outcome)
            if error is not None and outcome.retryable:
                queued.append((len(report.outcomes) - 1, entry))

        if queued and not cancelled:
            logger.info(
                f"Retrying {len(queued)} failed resources in {self.settings.retry_backoff_seconds}s"
            )
            self.sleep(self.settings.retry_backoff_seconds)
            for position, document in queued:
                previous = report.outcomes[position]
                outcome = self._new_outcome(document, namespace)
                outcome.attempts = previous.attempts
                outcome.retried = True
                self._apply_document(document, namespace, outcome)
                # Retries never cascade
                outcome.retryable = False
                report.outcomes[position] = outcome
                report.retried.append(outcome)

        report.finished_at = datetime.utcnow()
        self._log_summary(report)
        return report

    def delete_batch(
        self,
        bundle: Union[str, ManifestBundle],
        namespace: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchReport:
        """
        Delete every document in reverse bundle order.

        Objects that are already gone count as successful no-ops.

        Args:
            bundle: Bundle text or parsed bundle
            namespace: Namespace for namespaced documents that name none
            cancel_event: Checked between documents; remaining documents are skipped once set

        Returns:
            BatchReport with one outcome per document, in deletion order

        Raises:
            EmptyBundleError: If the bundle holds no usable document
            InvalidTargetError: If namespace is empty or malformed
        """
        bundle = load_bundle(bundle)
        check_namespace(namespace)
        report = BatchReport(operation=BatchOperation.DELETE, namespace=namespace)
        logger.info(f"Deleting {len(bundle)} resources from namespace {namespace}")

        cancelled = False
        for entry in reversed(_in_order(bundle)):
            if isinstance(entry, RejectedDocument):
                report.outcomes.append(entry.to_outcome())
                continue

            if cancelled or (cancel_event is not None and cancel_event.is_set()):
                cancelled = True
                report.outcomes.append(self._cancelled(entry, namespace))
                continue

            outcome = self._new_outcome(entry, namespace)
            self._delete_document(entry.kind, entry.api_version, entry.name, namespace, outcome)
            report.outcomes.append(outcome)

        report.finished_at = datetime.utcnow()
        self._log_summary(report)
        return report

    def delete_single_resource(
        self,
        kind: str,
        name: str,
        namespace: str,
        api_version: Optional[str] = None,
    ) -> ApplyOutcome:
        """
        Delete one user-managed resource.

        Args:
            kind: Resource kind; must be in the deletable allow-list
            name: Resource name
            namespace: Resource namespace
            api_version: apiVersion; defaults to the kind's usual version

        Returns:
            ApplyOutcome of the deletion

        Raises:
            ResourceNotDeletableError: If kind is not in the allow-list
            InvalidTargetError: If name or namespace cannot address a single object
        """
        if kind not in DELETABLE_KINDS:
            raise ResourceNotDeletableError(kind)
        check_name(name)
        check_namespace(namespace)

        outcome = ApplyOutcome(kind=kind, name=name, namespace=namespace)
        self._delete_document(kind, api_version or DELETABLE_KINDS[kind], name, namespace, outcome)
        return outcome

    def _apply_document(
        self, document: ManifestDocument, namespace: str, outcome: ApplyOutcome
    ) -> Optional[Exception]:
        """Create, or patch on conflict. Returns the error of a failed attempt."""
        outcome.attempts += 1
        try:
            endpoint = resolve_endpoint(document.kind, document.api_version)
        except EndpointResolutionError as e:
            self._fail(outcome, e, retryable=False)
            return e

        target_ns = None
        if endpoint.namespaced:
            document = document.with_namespace(namespace)
            target_ns = document.namespace
        outcome.namespace = target_ns

        try:
            self.resources.create(endpoint, target_ns, document.body)
            outcome.action = ApplyAction.CREATED
            logger.info(f"Created {document.ref} ({target_ns or 'cluster'})")
            return None
        except ApplyConflictError:
            pass
        except ApplyError as e:
            self._fail(outcome, e, retryable=is_retryable(e))
            return e
        except InvalidTargetError as e:
            self._fail(outcome, e, retryable=False)
            return e

        try:
            self.resources.patch(endpoint, target_ns, document.name, document.body)
            outcome.action = ApplyAction.PATCHED
            logger.info(f"Patched {document.ref} ({target_ns or 'cluster'})")
            return None
        except (ApplyError, InvalidTargetError) as e:
            self._fail(outcome, e, retryable=False)
            return e

    def _delete_document(
        self,
        kind: str,
        api_version: str,
        name: str,
        namespace: str,
        outcome: ApplyOutcome,
    ) -> None:
        outcome.attempts += 1
        try:
            endpoint = resolve_endpoint(kind, api_version)
        except EndpointResolutionError as e:
            self._fail(outcome, e, retryable=False)
            return

        target_ns = None
        if endpoint.namespaced:
            target_ns = outcome.namespace or namespace
        outcome.namespace = target_ns

        try:
            self.resources.delete(endpoint, target_ns, name)
            outcome.action = ApplyAction.DELETED
            logger.info(f"Deleted {kind}/{name} ({target_ns or 'cluster'})")
        except DeleteNotFoundError:
            outcome.action = ApplyAction.SKIPPED
            outcome.note = "already absent"
            logger.info(f"{kind}/{name} already absent")
        except (ApplyError, InvalidTargetError) as e:
            self._fail(outcome, e, retryable=False)

    def _ensure_namespace(self, namespace: str) -> None:
        endpoint = resolve_endpoint("Namespace", "v1")
        try:
            if self.resources.read(endpoint, None, namespace) is not None:
                logger.info(f"Namespace '{namespace}' already exists")
                return
            self.resources.create(
                endpoint,
                None,
                {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}},
            )
            logger.info(f"Created namespace '{namespace}'")
        except ApplyConflictError:
            logger.info(f"Namespace '{namespace}' already exists")
        except ApplyError as e:
            logger.warning(f"Could not ensure namespace '{namespace}': {e}")

    @staticmethod
    def _new_outcome(document: ManifestDocument, namespace: str) -> ApplyOutcome:
        return ApplyOutcome(
            index=document.index,
            kind=document.kind,
            name=document.name,
            namespace=document.namespace or (None if document.kind == "Namespace" else namespace),
        )

    @staticmethod
    def _cancelled(document: ManifestDocument, namespace: str) -> ApplyOutcome:
        outcome = Reconciler._new_outcome(document, namespace)
        outcome.action = ApplyAction.SKIPPED
        outcome.error_detail = CANCELLED
        return outcome

    @staticmethod
    def _fail(outcome: ApplyOutcome, error: Exception, retryable: bool) -> None:
        outcome.action = ApplyAction.FAILED
        outcome.error_detail = f"{outcome.kind} operation failed: {error}"
        outcome.retryable = retryable
        logger.warning(f"Failed {outcome.kind}/{outcome.name}: {error}")

    @staticmethod
    def _log_summary(report: BatchReport) -> None:
        logger.info(
            f"{report.operation.value.capitalize()} of namespace {report.namespace} finished: "
            f"{report.success_count} succeeded, {report.failure_count} failed, "
            f"{report.skipped_count} skipped, {len(report.retried)} retried"
        )


def _in_order(bundle: ManifestBundle) -> list[Union[ManifestDocument, RejectedDocument]]:
    """Valid and rejected entries merged back into submission order."""
    entries: list[Union[ManifestDocument, RejectedDocument]] = [*bundle.documents, *bundle.rejected]
    return sorted(entries, key=lambda entry: entry.index or 0)
