"""Deployment ledger and cluster credential storage."""

from .crud import ClusterCredentialStore, DeploymentLedger
from .database import Base, create_engine, create_session_factory, drop_db, init_db
from .models import ClusterCredentialRecord, DeploymentRecord

__all__ = [
    "Base",
    "ClusterCredentialRecord",
    "ClusterCredentialStore",
    "DeploymentLedger",
    "DeploymentRecord",
    "create_engine",
    "create_session_factory",
    "drop_db",
    "init_db",
]
