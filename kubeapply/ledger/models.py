"""Database models for the deployment ledger."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text, Uuid

from .database import Base


class DeploymentRecord(Base):
    """Applied manifest bundle and its last known status."""

    __tablename__ = "deployments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    owner_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    namespace = Column(String(255), nullable=False)
    manifest_bundle = Column(Text, nullable=False)
    status = Column(String(50), default="pending", nullable=False, index=True)
    workloads_count = Column(Integer, default=0, nullable=False)
    resources_count = Column(Integer, default=0, nullable=False)
    message = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime)

    def __repr__(self):
        return f"<DeploymentRecord(id={self.id}, namespace={self.namespace}, status={self.status})>"


class ClusterCredentialRecord(Base):
    """Externally supplied cluster credentials of one owner."""

    __tablename__ = "cluster_credentials"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    owner_id = Column(String(255), unique=True, nullable=False, index=True)
    server_url = Column(String(512))
    token = Column(Text)
    cluster_id = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ClusterCredentialRecord(owner_id={self.owner_id}, cluster_id={self.cluster_id})>"
