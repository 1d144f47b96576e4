"""Parse multi-document YAML bundles into ordered manifest documents."""

import logging
import re
from typing import Iterator, Optional

import yaml

from .exceptions import BundleParseError, EmptyBundleError, InvalidTargetError
from .models import ApplyAction, ApplyOutcome, ManifestDocument, check_name, check_namespace

logger = logging.getLogger(__name__)

DOCUMENT_SEPARATOR = re.compile(r"^[ \t]*---[ \t]*$", re.MULTILINE)

WORKLOAD_KINDS = frozenset(
    {"Pod", "Deployment", "ReplicaSet", "StatefulSet", "DaemonSet", "Job", "CronJob"}
)


class RejectedDocument:
    """A bundle chunk that could not be turned into a manifest document."""

    def __init__(self, error: BundleParseError, kind: Optional[str] = None, name: Optional[str] = None):
        self.error = error
        self.index = error.index
        self.kind = kind or "Unknown"
        self.name = name or f"document-{error.index}"

    def to_outcome(self) -> ApplyOutcome:
        """Report the rejection as a skipped outcome."""
        return ApplyOutcome(
            index=self.index,
            kind=self.kind,
            name=self.name,
            action=ApplyAction.SKIPPED,
            error_detail=str(self.error),
        )

    def __repr__(self):
        return f"<RejectedDocument(index={self.index}, error={self.error.message!r})>"


class ManifestBundle:
    """
    Ordered collection of manifest documents.

    Order is dependency order: namespace and access control first,
    workloads next, networking objects last. Documents are never reordered.
    """

    def __init__(
        self,
        documents: list[ManifestDocument],
        rejected: Optional[list[RejectedDocument]] = None,
    ):
        self.documents = list(documents)
        self.rejected = list(rejected or [])

    @classmethod
    def parse(cls, bundle_text: str) -> "ManifestBundle":
        """
        Parse bundle text.

        Args:
            bundle_text: UTF-8 YAML documents separated by ``---`` lines

        Returns:
            ManifestBundle with valid documents and rejected chunks

        Raises:
            EmptyBundleError: If the text holds no document at all
        """
        if not isinstance(bundle_text, str):
            raise EmptyBundleError(f"bundle must be text, got {type(bundle_text).__name__}")

        chunks = [chunk for chunk in DOCUMENT_SEPARATOR.split(bundle_text) if chunk.strip()]
        if not chunks:
            raise EmptyBundleError("bundle contains no documents")

        documents: list[ManifestDocument] = []
        rejected: list[RejectedDocument] = []

        for i, chunk in enumerate(chunks, start=1):
            try:
                documents.append(parse_document(chunk, i))
            except BundleParseError as e:
                kind, name = _peek_identity(chunk)
                logger.warning(f"Skipping invalid manifest document {i}: {e.message}")
                rejected.append(RejectedDocument(e, kind=kind, name=name))

        return cls(documents, rejected)

    def __iter__(self) -> Iterator[ManifestDocument]:
        return iter(self.documents)

    def __len__(self) -> int:
        return len(self.documents)

    def __bool__(self) -> bool:
        return bool(self.documents)

    def skipped_outcomes(self) -> list[ApplyOutcome]:
        """Get skipped outcomes for every rejected chunk."""
        return [r.to_outcome() for r in self.rejected]

    def identities(self, default_namespace: Optional[str] = None) -> set[tuple[str, str, Optional[str]]]:
        """Get the (kind, name, namespace) of every document."""
        return {doc.identity(default_namespace) for doc in self.documents}

    def has_namespace(self, namespace: str) -> bool:
        """Whether the bundle itself declares the given Namespace."""
        return any(doc.kind == "Namespace" and doc.name == namespace for doc in self.documents)

    def counts(self) -> dict[str, int]:
        """Count workload documents and all other resources."""
        workloads = sum(1 for doc in self.documents if doc.kind in WORKLOAD_KINDS)
        return {"workloads": workloads, "resources": len(self.documents) - workloads}

    def to_text(self) -> str:
        """Serialize the valid documents back into bundle text."""
        return "\n---\n".join(
            yaml.safe_dump(doc.body, default_flow_style=False, sort_keys=False).rstrip()
            for doc in self.documents
        )

    def __repr__(self):
        return f"<ManifestBundle(documents={len(self.documents)}, rejected={len(self.rejected)})>"


def parse_document(chunk: str, index: int) -> ManifestDocument:
    """
    Parse a single YAML chunk into a manifest document.

    Args:
        chunk: YAML text of one document
        index: 1-based position in the bundle

    Returns:
        ManifestDocument

    Raises:
        BundleParseError: If the chunk is not a usable Kubernetes object
    """
    try:
        body = yaml.safe_load(chunk)
    except yaml.YAMLError as e:
        raise BundleParseError(f"invalid YAML: {e}", index=index) from e

    if not isinstance(body, dict):
        raise BundleParseError("document is not a mapping", index=index)

    kind = body.get("kind")
    if not kind or not isinstance(kind, str):
        raise BundleParseError("document has no kind", index=index)

    metadata = body.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise BundleParseError(f"{kind} document has no metadata.name", index=index)

    name = str(metadata["name"])
    namespace = metadata.get("namespace") or None
    try:
        check_name(name)
        if namespace is not None:
            namespace = check_namespace(str(namespace))
    except InvalidTargetError as e:
        raise BundleParseError(f"{kind} document: {e}", index=index) from e

    api_version = body.get("apiVersion") or "v1"
    body["apiVersion"] = api_version

    return ManifestDocument(
        index=index,
        api_version=str(api_version),
        kind=kind,
        name=name,
        namespace=namespace,
        body=body,
    )


def _peek_identity(chunk: str) -> tuple[Optional[str], Optional[str]]:
    """Best-effort kind and name of a rejected chunk, for reporting."""
    kind = re.search(r"^kind:\s*(\S+)", chunk, re.MULTILINE)
    name = re.search(r"^\s+name:\s*(\S+)", chunk, re.MULTILINE)
    return (kind.group(1) if kind else None, name.group(1) if name else None)
