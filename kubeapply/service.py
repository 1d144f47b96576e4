"""Deployment lifecycle: apply, edit and tear down bundles recorded in the ledger."""

import asyncio
import logging
from typing import Callable, List, Optional
from uuid import UUID

from pydantic import BaseModel

from .config import Settings, get_settings
from .exceptions import (
    DeploymentNotFoundError,
    EmptyBundleError,
    ResourceNotDeletableError,
    SecurityCheckError,
)
from .ledger import DeploymentLedger
from .manifest import ManifestBundle
from .models import (
    ApplyOutcome,
    BatchReport,
    DeploymentRecordView,
    DeploymentStatus,
    ManifestDocument,
)
from .reconciler import DELETABLE_KINDS, Reconciler, load_bundle
from .security import SecurityReport, check_bundle
from .session import ClusterSession, ClusterSessionFactory

logger = logging.getLogger(__name__)


class DeploymentResult(BaseModel):
    """Outcome of a deploy or redeploy."""

    record_id: UUID
    report: BatchReport
    security: SecurityReport
    pruned: Optional[BatchReport] = None

    @property
    def status(self) -> DeploymentStatus:
        return self.report.status


def _failure_message(report: BatchReport) -> Optional[str]:
    failures = report.failures()
    if not failures:
        return None
    return "; ".join(f.error_detail or f"{f.kind}/{f.name} failed" for f in failures)


def _find_document(bundle_text: str, kind: str, name: str) -> Optional[ManifestDocument]:
    """Find a stored document by kind and name."""
    try:
        bundle = ManifestBundle.parse(bundle_text)
    except EmptyBundleError:
        return None
    for document in bundle:
        if document.kind == kind and document.name == name:
            return document
    return None


class DeploymentService:
    """
    Runs reconciliation batches and keeps the ledger in step.

    Cluster calls are blocking and run in a worker thread, one batch per
    acquired session.
    """

    def __init__(
        self,
        ledger: DeploymentLedger,
        session_factory: ClusterSessionFactory,
        settings: Optional[Settings] = None,
        reconciler_factory: Optional[Callable[[ClusterSession], Reconciler]] = None,
    ):
        """
        Initialize deployment service.

        Args:
            ledger: Deployment ledger
            session_factory: Resolves the cluster session for each batch
            settings: Library settings
            reconciler_factory: Builds the reconciler for a session
        """
        self.ledger = ledger
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.reconciler_factory = reconciler_factory or (
            lambda session: Reconciler(session, settings=self.settings)
        )

    def _check(self, bundle: ManifestBundle) -> SecurityReport:
        security = check_bundle(bundle)
        if not security.valid:
            logger.warning(security.summary)
            if self.settings.block_on_security_errors:
                raise SecurityCheckError(security)
        return security

    async def _owned(self, record_id: UUID, owner_id: str) -> DeploymentRecordView:
        record = await self.ledger.get(record_id)
        if record is None or record.owner_id != owner_id or record.status == DeploymentStatus.DELETED:
            raise DeploymentNotFoundError(f"Deployment {record_id} not found")
        return record

    async def deploy(
        self,
        owner_id: str,
        bundle_text: str,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
    ) -> DeploymentResult:
        """
        Apply a new bundle and record it.

        Args:
            owner_id: Owner of the deployment
            bundle_text: Multi-document manifest bundle
            namespace: Target namespace; defaults to the configured namespace
            name: Display name for the record

        Returns:
            DeploymentResult; inspect ``report`` for per-resource failures

        Raises:
            EmptyBundleError: If the bundle holds no usable document
            ClusterSessionError: If no cluster credentials are usable
            SecurityCheckError: If blocking is enabled and checks fail
        """
        namespace = namespace or self.settings.default_namespace
        bundle = load_bundle(bundle_text)
        security = self._check(bundle)

        session = await self.session_factory.acquire(owner_id)
        with session:
            reconciler = self.reconciler_factory(session)
            report = await asyncio.to_thread(reconciler.apply_batch, bundle, namespace)

        record_id = await self.ledger.save(
            owner_id,
            bundle_text,
            namespace,
            report.status,
            name=name,
            message=_failure_message(report),
        )
        return DeploymentResult(record_id=record_id, report=report, security=security)

    async def redeploy(
        self,
        record_id: UUID,
        owner_id: str,
        bundle_text: str,
        prune: bool = False,
    ) -> DeploymentResult:
        """
        Apply an edited bundle to an existing deployment.

        Args:
            record_id: Deployment record ID
            owner_id: Owner of the deployment
            bundle_text: New bundle
            prune: Delete objects that the edit removed from the bundle

        Returns:
            DeploymentResult, with ``pruned`` set when objects were removed

        Raises:
            DeploymentNotFoundError: If the record is missing, deleted or not owned
        """
        record = await self._owned(record_id, owner_id)
        bundle = load_bundle(bundle_text)
        security = self._check(bundle)

        stale = None
        if prune:
            stale = self._stale_documents(record, bundle)

        session = await self.session_factory.acquire(owner_id)
        with session:
            reconciler = self.reconciler_factory(session)
            pruned = None
            if stale:
                logger.info(f"Pruning {len(stale)} resources removed from deployment {record_id}")
                pruned = await asyncio.to_thread(reconciler.delete_batch, stale, record.namespace)
            report = await asyncio.to_thread(reconciler.apply_batch, bundle, record.namespace)

        await self.ledger.update_bundle(
            record_id, bundle_text, report.status, message=_failure_message(report)
        )
        return DeploymentResult(record_id=record_id, report=report, security=security, pruned=pruned)

    @staticmethod
    def _stale_documents(record: DeploymentRecordView, bundle: ManifestBundle) -> Optional[ManifestBundle]:
        try:
            previous = ManifestBundle.parse(record.manifest_bundle)
        except EmptyBundleError:
            return None
        keep = bundle.identities(record.namespace)
        stale = [doc for doc in previous if doc.identity(record.namespace) not in keep]
        return ManifestBundle(stale) if stale else None

    async def teardown(self, record_id: UUID, owner_id: str) -> BatchReport:
        """
        Delete every object of a deployment, then soft-delete the record.

        If some objects could not be deleted the record is kept as ``partial``
        so the teardown can be repeated.

        Args:
            record_id: Deployment record ID
            owner_id: Owner of the deployment

        Returns:
            BatchReport of the deletion

        Raises:
            DeploymentNotFoundError: If the record is missing, deleted or not owned
        """
        record = await self._owned(record_id, owner_id)
        bundle = load_bundle(record.manifest_bundle)

        session = await self.session_factory.acquire(owner_id)
        with session:
            reconciler = self.reconciler_factory(session)
            report = await asyncio.to_thread(reconciler.delete_batch, bundle, record.namespace)

        if report.failure_count == 0:
            await self.ledger.soft_delete(record_id)
        else:
            await self.ledger.update_status(
                record_id, DeploymentStatus.PARTIAL, message=_failure_message(report)
            )
        return report

    async def delete_resource(
        self,
        record_id: UUID,
        owner_id: str,
        kind: str,
        name: str,
    ) -> ApplyOutcome:
        """
        Delete one user-managed object of a deployment.

        Raises:
            ResourceNotDeletableError: If kind is not individually deletable
            DeploymentNotFoundError: If the record is missing, deleted or not owned,
                or its bundle holds no such object
        """
        if kind not in DELETABLE_KINDS:
            raise ResourceNotDeletableError(kind)

        record = await self._owned(record_id, owner_id)
        document = _find_document(record.manifest_bundle, kind, name)
        if document is None:
            raise DeploymentNotFoundError(f"{kind}/{name} is not part of deployment {record_id}")
        namespace = document.namespace or record.namespace

        session = await self.session_factory.acquire(owner_id)
        with session:
            reconciler = self.reconciler_factory(session)
            return await asyncio.to_thread(
                reconciler.delete_single_resource, kind, name, namespace, document.api_version
            )

    async def list_deployments(self, owner_id: str) -> List[DeploymentRecordView]:
        """List an owner's live deployments, newest first."""
        return await self.ledger.list_for_owner(owner_id)

    async def get_manifest(self, record_id: UUID, owner_id: str) -> str:
        """Get the bundle text stored for a deployment."""
        record = await self._owned(record_id, owner_id)
        return record.manifest_bundle
