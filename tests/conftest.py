"""Pytest configuration and fixtures for kubeapply tests."""

from unittest.mock import Mock

import pytest

from fakes import SAMPLE_BUNDLE, FakeCluster
from kubeapply import Reconciler, Settings
from kubeapply.ledger import (
    ClusterCredentialStore,
    DeploymentLedger,
    create_engine,
    create_session_factory,
    drop_db,
    init_db,
)


@pytest.fixture
def settings():
    """Settings isolated from the environment."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        retry_backoff_seconds=2.0,
        ensure_namespace=False,
        kubeconfig_path=None,
    )


@pytest.fixture
def fake_cluster():
    """Empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def sleep():
    """Recorded, non-blocking replacement for time.sleep."""
    return Mock()


@pytest.fixture
def reconciler(fake_cluster, settings, sleep):
    """Reconciler talking to the fake cluster."""
    return Reconciler(fake_cluster, settings=settings, sleep=sleep)


@pytest.fixture
def sample_bundle():
    """Namespace, Deployment, Service and HTTPRoute in dependency order."""
    return SAMPLE_BUNDLE


@pytest.fixture
async def session_factory(settings):
    """In-memory SQLite database with the ledger tables."""
    engine = create_engine(settings)
    await init_db(engine)

    yield create_session_factory(engine)

    await drop_db(engine)
    await engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return DeploymentLedger(session_factory)


@pytest.fixture
def credential_store(session_factory):
    return ClusterCredentialStore(session_factory)
