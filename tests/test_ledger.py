"""Tests for the deployment ledger and credential store."""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from kubeapply.models import ClusterCredentials, DeploymentStatus


class TestDeploymentLedger:
    """Tests for DeploymentLedger."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, ledger, sample_bundle):
        record_id = await ledger.save("owner-1", sample_bundle, "shop", DeploymentStatus.DEPLOYED, name="shop")

        record = await ledger.get(record_id)

        assert record.id == record_id
        assert record.owner_id == "owner-1"
        assert record.name == "shop"
        assert record.namespace == "shop"
        assert record.manifest_bundle == sample_bundle
        assert record.status == DeploymentStatus.DEPLOYED
        assert record.workloads_count == 1
        assert record.resources_count == 3
        assert record.deleted_at is None

    @pytest.mark.asyncio
    async def test_save_generates_name(self, ledger, sample_bundle):
        record_id = await ledger.save("owner-1", sample_bundle, "shop", DeploymentStatus.DEPLOYED)

        record = await ledger.get(record_id)

        assert record.name.startswith("deployment-")

    @pytest.mark.asyncio
    async def test_save_unparseable_bundle_counts_zero(self, ledger):
        record_id = await ledger.save("owner-1", "", "shop", DeploymentStatus.PENDING)

        record = await ledger.get(record_id)

        assert record.workloads_count == 0
        assert record.resources_count == 0

    @pytest.mark.asyncio
    async def test_get_missing(self, ledger):
        assert await ledger.get(uuid4()) is None

    @pytest.mark.asyncio
    async def test_update_status(self, ledger, sample_bundle):
        record_id = await ledger.save("owner-1", sample_bundle, "shop", DeploymentStatus.DEPLOYED)

        assert await ledger.update_status(record_id, DeploymentStatus.PARTIAL, message="Service/web failed")

        record = await ledger.get(record_id)
        assert record.status == DeploymentStatus.PARTIAL
        assert record.message == "Service/web failed"

    @pytest.mark.asyncio
    async def test_update_missing_returns_false(self, ledger):
        assert await ledger.update_status(uuid4(), DeploymentStatus.PARTIAL) is False
        assert await ledger.soft_delete(uuid4()) is False

    @pytest.mark.asyncio
    async def test_update_bundle_recounts(self, ledger, sample_bundle):
        record_id = await ledger.save("owner-1", sample_bundle, "shop", DeploymentStatus.DEPLOYED)
        edited = "kind: Service\nmetadata:\n  name: web\n"

        await ledger.update_bundle(record_id, edited, DeploymentStatus.DEPLOYED)

        record = await ledger.get(record_id)
        assert record.manifest_bundle == edited
        assert record.workloads_count == 0
        assert record.resources_count == 1

    @pytest.mark.asyncio
    async def test_soft_delete_keeps_row(self, ledger, sample_bundle):
        record_id = await ledger.save("owner-1", sample_bundle, "shop", DeploymentStatus.DEPLOYED)

        assert await ledger.soft_delete(record_id)

        record = await ledger.get(record_id)
        assert record.status == DeploymentStatus.DELETED
        assert record.deleted_at is not None

    @pytest.mark.asyncio
    async def test_list_for_owner(self, ledger, sample_bundle):
        first = await ledger.save("owner-1", sample_bundle, "shop", DeploymentStatus.DEPLOYED, name="first")
        await ledger.save("owner-1", sample_bundle, "blog", DeploymentStatus.PARTIAL, name="second")
        await ledger.save("owner-2", sample_bundle, "shop", DeploymentStatus.DEPLOYED, name="other")
        await ledger.soft_delete(first)

        live = await ledger.list_for_owner("owner-1")
        everything = await ledger.list_for_owner("owner-1", include_deleted=True)

        assert [r.name for r in live] == ["second"]
        assert {r.name for r in everything} == {"first", "second"}

    @pytest.mark.asyncio
    async def test_write_retries_operational_errors(self, ledger, sample_bundle):
        session_factory = ledger.session_factory
        calls = AsyncMock(side_effect=[OperationalError("INSERT", {}, Exception("database is locked")), None])

        class FlakySession:
            """Wraps a real session and fails the first commit."""

            def __init__(self):
                self.inner = session_factory()

            async def __aenter__(self):
                self.db = await self.inner.__aenter__()
                return self

            async def __aexit__(self, *exc):
                return await self.inner.__aexit__(*exc)

            def add(self, record):
                self.db.add(record)

            async def commit(self):
                await calls()
                await self.db.commit()

            async def refresh(self, record):
                await self.db.refresh(record)

        ledger.session_factory = FlakySession

        record_id = await ledger.save("owner-1", sample_bundle, "shop", DeploymentStatus.DEPLOYED)

        assert calls.await_count == 2
        ledger.session_factory = session_factory
        assert await ledger.get(record_id) is not None


class TestClusterCredentialStore:
    """Tests for ClusterCredentialStore."""

    @pytest.mark.asyncio
    async def test_missing_owner(self, credential_store):
        assert await credential_store.get_credentials_for_owner("nobody") is None

    @pytest.mark.asyncio
    async def test_set_and_replace(self, credential_store):
        await credential_store.set_credentials("owner-1", "https://a.example.com", "token-a", "cluster-a")
        await credential_store.set_credentials("owner-1", "https://b.example.com", "token-b", "cluster-b")

        credentials = await credential_store.get_credentials_for_owner("owner-1")

        assert credentials == ClusterCredentials(
            server_url="https://b.example.com", token="token-b", cluster_id="cluster-b"
        )
        assert credentials.is_complete

    @pytest.mark.asyncio
    async def test_partial_credentials_are_returned_as_stored(self, credential_store):
        await credential_store.set_credentials("owner-1", "https://a.example.com", None, "cluster-a")

        credentials = await credential_store.get_credentials_for_owner("owner-1")

        assert credentials.token is None
        assert not credentials.is_complete
