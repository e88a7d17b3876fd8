"""
Inventory — the source of resources and the owner of label writes.

Every write must carry the resource's current label fingerprint. A stale
fingerprint raises ConflictError; the caller re-reads and decides again.
"""

import hashlib
import threading
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from labelgov.errors import ConflictError, ResourceNotFoundError
from labelgov.labels import canonical_label_hash
from labelgov.models.resource import GceResource


class InventorySource(Protocol):
    """Protocol for inventory backends."""

    def list_resources(self) -> List[GceResource]: ...

    def get_resource(self, resource_id: str) -> GceResource: ...

    def write_labels(
        self, resource_id: str, labels: Mapping[str, str], fingerprint: str
    ) -> GceResource: ...


def compute_fingerprint(resource_id: str, generation: int, labels: Mapping[str, str]) -> str:
    data = f"{resource_id}:{generation}:{canonical_label_hash(labels)}"
    return hashlib.sha256(data.encode()).hexdigest()[:16]


class InMemoryInventory:
    """
    In-memory inventory for tests and local use.
    Production would front the cloud provider's labels API.
    """

    def __init__(self, resources: Optional[Sequence[GceResource]] = None):
        self._resources: Dict[str, GceResource] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()
        for resource in resources or []:
            self.upsert(resource)

    def upsert(self, resource: GceResource) -> GceResource:
        """Insert or replace a resource, assigning a fresh fingerprint."""
        with self._lock:
            generation = self._generations.get(resource.id, 0) + 1
            self._generations[resource.id] = generation
            stored = resource.model_copy(update={
                "label_fingerprint": compute_fingerprint(resource.id, generation, resource.labels),
            })
            self._resources[resource.id] = stored
            return stored

    def remove(self, resource_id: str) -> bool:
        with self._lock:
            return self._resources.pop(resource_id, None) is not None

    def list_resources(self) -> List[GceResource]:
        with self._lock:
            return list(self._resources.values())

    def get_resource(self, resource_id: str) -> GceResource:
        with self._lock:
            resource = self._resources.get(resource_id)
        if resource is None:
            raise ResourceNotFoundError(f"Resource {resource_id} not found")
        return resource

    def write_labels(
        self, resource_id: str, labels: Mapping[str, str], fingerprint: str
    ) -> GceResource:
        """Compare-and-set on the label fingerprint."""
        with self._lock:
            current = self._resources.get(resource_id)
            if current is None:
                raise ResourceNotFoundError(f"Resource {resource_id} not found")
            if fingerprint != current.label_fingerprint:
                raise ConflictError(resource_id, fingerprint, current.label_fingerprint)

            generation = self._generations[resource_id] + 1
            self._generations[resource_id] = generation
            updated = current.model_copy(update={
                "labels": dict(labels),
                "label_fingerprint": compute_fingerprint(resource_id, generation, labels),
            })
            self._resources[resource_id] = updated
            return updated
