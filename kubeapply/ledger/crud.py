"""CRUD operations for deployment records and cluster credentials."""

import logging
import time
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..exceptions import BundleParseError
from ..manifest import ManifestBundle
from ..models import ClusterCredentials, DeploymentRecordView, DeploymentStatus
from .models import ClusterCredentialRecord, DeploymentRecord

logger = logging.getLogger(__name__)

write_retry = retry(
    retry=retry_if_exception_type(OperationalError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True,
)


def _bundle_counts(manifest_bundle: str) -> dict[str, int]:
    try:
        return ManifestBundle.parse(manifest_bundle).counts()
    except BundleParseError:
        return {"workloads": 0, "resources": 0}


class DeploymentLedger:
    """Persists applied bundles so later edits and teardowns act on the same objects."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize deployment ledger.

        Args:
            session_factory: Async session factory
        """
        self.session_factory = session_factory

    @write_retry
    async def save(
        self,
        owner_id: str,
        manifest_bundle: str,
        namespace: str,
        status: DeploymentStatus,
        name: Optional[str] = None,
        message: Optional[str] = None,
    ) -> UUID:
        """
        Record a newly applied bundle.

        Args:
            owner_id: Owner of the deployment
            manifest_bundle: Bundle text as applied
            namespace: Target namespace
            status: Batch status
            name: Display name; generated when omitted
            message: Optional status message

        Returns:
            Record ID
        """
        counts = _bundle_counts(manifest_bundle)
        record = DeploymentRecord(
            owner_id=owner_id,
            name=name or f"deployment-{int(time.time() * 1000)}",
            namespace=namespace,
            manifest_bundle=manifest_bundle,
            status=DeploymentStatus(status).value,
            workloads_count=counts["workloads"],
            resources_count=counts["resources"],
            message=message,
        )
        async with self.session_factory() as db:
            db.add(record)
            await db.commit()
            await db.refresh(record)

        logger.info(f"Saved deployment {record.id} ({record.status}) for owner {owner_id}")
        return record.id

    async def get(self, record_id: UUID) -> Optional[DeploymentRecordView]:
        """
        Get a deployment record, including soft-deleted ones.

        Args:
            record_id: Record ID

        Returns:
            DeploymentRecordView or None
        """
        async with self.session_factory() as db:
            record = await db.get(DeploymentRecord, record_id)
            if record is None:
                return None
            return DeploymentRecordView.model_validate(record)

    @write_retry
    async def update_status(
        self,
        record_id: UUID,
        status: DeploymentStatus,
        message: Optional[str] = None,
    ) -> bool:
        """
        Update the status of a record.

        Returns:
            True if updated, False if not found
        """
        async with self.session_factory() as db:
            record = await db.get(DeploymentRecord, record_id)
            if record is None:
                return False
            record.status = DeploymentStatus(status).value
            record.message = message
            await db.commit()
        return True

    @write_retry
    async def update_bundle(
        self,
        record_id: UUID,
        manifest_bundle: str,
        status: DeploymentStatus,
        message: Optional[str] = None,
    ) -> bool:
        """
        Replace the bundle of a record after an edit.

        Returns:
            True if updated, False if not found
        """
        counts = _bundle_counts(manifest_bundle)
        async with self.session_factory() as db:
            record = await db.get(DeploymentRecord, record_id)
            if record is None:
                return False
            record.manifest_bundle = manifest_bundle
            record.status = DeploymentStatus(status).value
            record.workloads_count = counts["workloads"]
            record.resources_count = counts["resources"]
            record.message = message
            await db.commit()
        return True

    @write_retry
    async def soft_delete(self, record_id: UUID) -> bool:
        """
        Mark a record deleted; the row is kept for audit.

        Returns:
            True if marked, False if not found
        """
        async with self.session_factory() as db:
            record = await db.get(DeploymentRecord, record_id)
            if record is None:
                return False
            record.status = DeploymentStatus.DELETED.value
            record.deleted_at = datetime.utcnow()
            await db.commit()

        logger.info(f"Soft-deleted deployment {record_id}")
        return True

    async def list_for_owner(
        self,
        owner_id: str,
        include_deleted: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> List[DeploymentRecordView]:
        """
        List an owner's deployments, newest first.

        Args:
            owner_id: Owner ID
            include_deleted: Include soft-deleted records
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            List of records
        """
        query = select(DeploymentRecord).where(DeploymentRecord.owner_id == owner_id)
        if not include_deleted:
            query = query.where(DeploymentRecord.status != DeploymentStatus.DELETED.value)
        query = query.order_by(DeploymentRecord.created_at.desc()).offset(skip).limit(limit)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return [DeploymentRecordView.model_validate(r) for r in result.scalars().all()]


class ClusterCredentialStore:
    """Per-owner external cluster credentials."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_credentials_for_owner(self, owner_id: str) -> Optional[ClusterCredentials]:
        """Get an owner's credentials, or None if none are stored."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(ClusterCredentialRecord).where(ClusterCredentialRecord.owner_id == owner_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None
            return ClusterCredentials(
                server_url=record.server_url,
                token=record.token,
                cluster_id=record.cluster_id,
            )

    @write_retry
    async def set_credentials(
        self,
        owner_id: str,
        server_url: Optional[str],
        token: Optional[str],
        cluster_id: Optional[str],
    ) -> None:
        """Create or replace an owner's credentials."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(ClusterCredentialRecord).where(ClusterCredentialRecord.owner_id == owner_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                record = ClusterCredentialRecord(owner_id=owner_id)
                db.add(record)
            record.server_url = server_url
            record.token = token
            record.cluster_id = cluster_id
            await db.commit()
