"""Generic create/read/patch/delete over resolved REST paths."""

import json
import logging
from typing import Any, Optional

from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError as TransportError

from .exceptions import (
    ApplyConflictError,
    ApplyError,
    ApplyTransientError,
    ApplyValidationError,
    DeleteNotFoundError,
)
from .models import ResourceEndpoint

logger = logging.getLogger(__name__)

JSON = "application/json"
MERGE_PATCH = "application/merge-patch+json"

VALIDATION_STATUSES = frozenset({400, 422})


def error_message(e: ApiException) -> str:
    """Extract the Status message from an API error body."""
    body = e.body
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if body:
        try:
            payload = json.loads(body)
        except ValueError:
            return str(body).strip()
        if isinstance(payload, dict) and payload.get("message"):
            return payload["message"]
    return e.reason or f"HTTP {e.status}"


def classify(e: Exception, verb: str) -> ApplyError:
    """
    Translate a client exception into the apply error taxonomy.

    Args:
        e: Exception raised by the API client
        verb: HTTP verb of the failed call

    Returns:
        ApplyError subclass instance
    """
    if not isinstance(e, ApiException):
        return ApplyTransientError(f"{type(e).__name__}: {e}", reason=type(e).__name__)

    status = e.status
    message = error_message(e)

    if status == 404 and verb == "DELETE":
        return DeleteNotFoundError(message, status=status, reason=e.reason)
    if status == 409 and verb == "POST":
        return ApplyConflictError(message, status=status, reason=e.reason)
    if status in VALIDATION_STATUSES or status == 409:
        return ApplyValidationError(message, status=status, reason=e.reason)
    return ApplyTransientError(message, status=status, reason=e.reason)


class ResourceClient:
    """Issues one generic request per call against a resolved endpoint."""

    def __init__(self, api_client: ApiClient, request_timeout: Optional[int] = None):
        """
        Initialize resource client.

        Args:
            api_client: Authenticated Kubernetes API client
            request_timeout: Per-request timeout in seconds
        """
        self.api_client = api_client
        self.request_timeout = request_timeout

    def _call(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        content_type: str = JSON,
    ) -> Any:
        logger.debug(f"{method} {path}")
        try:
            return self.api_client.call_api(
                path,
                method,
                header_params={"Accept": JSON, "Content-Type": content_type},
                body=body,
                response_type="object",
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
                _request_timeout=self.request_timeout,
            )
        except (ApiException, TransportError, OSError) as e:
            raise classify(e, method) from e

    def create(self, endpoint: ResourceEndpoint, namespace: Optional[str], body: dict[str, Any]) -> Any:
        """
        Create an object.

        Raises:
            ApplyConflictError: If the object already exists
            ApplyValidationError: If the cluster rejects the document
            ApplyTransientError: On transport or server-side failures
        """
        return self._call("POST", endpoint.collection_path(namespace), body=body)

    def read(self, endpoint: ResourceEndpoint, namespace: Optional[str], name: str) -> Optional[Any]:
        """
        Read an object.

        Returns:
            The object, or None if not found
        """
        try:
            return self._call("GET", endpoint.item_path(namespace, name))
        except ApplyError as e:
            if e.status == 404:
                return None
            raise

    def patch(
        self, endpoint: ResourceEndpoint, namespace: Optional[str], name: str, body: dict[str, Any]
    ) -> Any:
        """
        Merge-patch an existing object with the full document.

        Raises:
            ApplyValidationError: If the patch is rejected (invalid or immutable fields)
            ApplyTransientError: On transport or server-side failures
        """
        return self._call(
            "PATCH", endpoint.item_path(namespace, name), body=body, content_type=MERGE_PATCH
        )

    def delete(self, endpoint: ResourceEndpoint, namespace: Optional[str], name: str) -> Any:
        """
        Delete an object, letting the cluster garbage collect dependents.

        Raises:
            DeleteNotFoundError: If the object does not exist
            ApplyError: On any other failure
        """
        return self._call(
            "DELETE",
            endpoint.item_path(namespace, name),
            body={"apiVersion": "v1", "kind": "DeleteOptions", "propagationPolicy": "Background"},
        )
