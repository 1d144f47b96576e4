"""Authenticated connection to one target cluster."""

import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from kubernetes import client, config
from kubernetes.client import ApiClient
from kubernetes.config import ConfigException

from .config import Settings, get_settings
from .exceptions import ClusterSessionError
from .models import ClusterCredentials

logger = logging.getLogger(__name__)

SOURCE_IN_CLUSTER = "in-cluster"
SOURCE_KUBECONFIG = "kubeconfig"
SOURCE_EXTERNAL = "external"


class CredentialsProvider(Protocol):
    """Looks up externally supplied cluster credentials for an owner."""

    async def get_credentials_for_owner(self, owner_id: str) -> Optional[ClusterCredentials]:
        ...


def in_cluster_signals(settings: Optional[Settings] = None) -> bool:
    """
    Check whether the process runs with a cluster service identity.

    Args:
        settings: Settings holding the service-account token path

    Returns:
        True if service discovery env vars are set or the token file exists
    """
    settings = settings or get_settings()
    env_present = bool(
        os.environ.get("KUBERNETES_SERVICE_HOST") and os.environ.get("KUBERNETES_SERVICE_PORT")
    )
    token_present = Path(settings.service_account_token_path).exists()
    return env_present or token_present


class ClusterSession:
    """
    One authenticated handle to a cluster.

    A session belongs to exactly one batch. Use it as a context manager so
    the underlying connection pool is released when the batch ends.
    """

    def __init__(
        self,
        api_client: ApiClient,
        source: str,
        server_url: Optional[str] = None,
        auth_token: Optional[str] = None,
        tls_verify: bool = True,
    ):
        self._api_client: Optional[ApiClient] = api_client
        self.source = source
        self.server_url = server_url
        self.auth_token = auth_token
        self.tls_verify = tls_verify

    @classmethod
    def from_in_cluster(cls, settings: Optional[Settings] = None) -> "ClusterSession":
        """
        Build a session from the pod's service account.

        Raises:
            ClusterSessionError: If the in-cluster identity cannot be loaded
        """
        configuration = client.Configuration()
        try:
            config.load_incluster_config(client_configuration=configuration)
        except ConfigException as e:
            raise ClusterSessionError(f"Failed to load in-cluster configuration: {e}") from e
        return cls._from_configuration(configuration, SOURCE_IN_CLUSTER)

    @classmethod
    def from_kubeconfig(cls, path: str, context: Optional[str] = None) -> "ClusterSession":
        """
        Build a session from a kubeconfig file.

        Raises:
            ClusterSessionError: If the kubeconfig cannot be loaded
        """
        configuration = client.Configuration()
        try:
            config.load_kube_config(
                config_file=str(Path(path).expanduser()),
                context=context,
                client_configuration=configuration,
            )
        except (ConfigException, OSError) as e:
            raise ClusterSessionError(f"Failed to load kubeconfig {path}: {e}") from e
        return cls._from_configuration(configuration, SOURCE_KUBECONFIG)

    @classmethod
    def from_credentials(
        cls, credentials: Optional[ClusterCredentials], tls_verify: bool = False
    ) -> "ClusterSession":
        """
        Build a session from externally supplied credentials.

        Args:
            credentials: Server URL, bearer token and cluster id
            tls_verify: Verify the server certificate

        Raises:
            ClusterSessionError: If any credential field is missing
        """
        if credentials is None or not credentials.is_complete:
            raise ClusterSessionError(
                "Not running inside a Kubernetes cluster and no cluster credentials are configured"
            )

        configuration = client.Configuration()
        configuration.host = credentials.server_url.rstrip("/")
        configuration.api_key = {"authorization": credentials.token}
        configuration.api_key_prefix = {"authorization": "Bearer"}
        configuration.verify_ssl = tls_verify
        if not tls_verify:
            logger.warning(
                f"TLS verification disabled for cluster {credentials.cluster_id} at {configuration.host}"
            )

        return cls(
            ApiClient(configuration),
            SOURCE_EXTERNAL,
            server_url=configuration.host,
            auth_token=credentials.token,
            tls_verify=tls_verify,
        )

    @classmethod
    def _from_configuration(cls, configuration: client.Configuration, source: str) -> "ClusterSession":
        token = (configuration.api_key or {}).get("authorization")
        if token and token.lower().startswith("bearer "):
            token = token[len("bearer "):]
        return cls(
            ApiClient(configuration),
            source,
            server_url=configuration.host,
            auth_token=token,
            tls_verify=bool(configuration.verify_ssl),
        )

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster session is closed")
        return self._api_client

    @property
    def closed(self) -> bool:
        return self._api_client is None

    def close(self):
        """Close the session and release its connection pool."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"<ClusterSession(source={self.source}, server={self.server_url})>"


class ClusterSessionFactory:
    """Resolves the session to use for one batch."""

    def __init__(
        self,
        credentials_provider: Optional[CredentialsProvider] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize session factory.

        Args:
            credentials_provider: Source of per-owner external credentials
            settings: Library settings
        """
        self.credentials_provider = credentials_provider
        self.settings = settings or get_settings()

    async def acquire(self, owner_id: Optional[str] = None) -> ClusterSession:
        """
        Acquire a session; the first matching source wins.

        1. in-cluster service identity
        2. configured local kubeconfig
        3. the owner's external credentials

        Args:
            owner_id: Owner whose external credentials are used as the last resort

        Returns:
            ClusterSession

        Raises:
            ClusterSessionError: If no source yields a usable session
        """
        if in_cluster_signals(self.settings):
            logger.info("Detected in-cluster Kubernetes environment")
            return ClusterSession.from_in_cluster(self.settings)

        if self.settings.kubeconfig_path:
            logger.info(f"Using kubeconfig {self.settings.kubeconfig_path}")
            return ClusterSession.from_kubeconfig(
                self.settings.kubeconfig_path, self.settings.kube_context
            )

        if self.credentials_provider is None or owner_id is None:
            raise ClusterSessionError(
                "Not running inside a Kubernetes cluster and no credential source is available"
            )

        credentials = await self.credentials_provider.get_credentials_for_owner(owner_id)
        session = ClusterSession.from_credentials(
            credentials, tls_verify=self.settings.external_tls_verify
        )
        logger.info(f"Using external cluster credentials for owner {owner_id}: {session.server_url}")
        return session
