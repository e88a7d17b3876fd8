"""
Audit Trail Recorder — append-only label history, indexed by resource id.

Behavioral Contract:
- Append-only. No entry is ever modified, merged, or deleted.
- Appends to the same resource are serialized; different resources never
  wait on each other.
- Entries for one resource are hashed and chained (tamper-evident).
- REVERT entries must restore the previous_labels of an earlier entry;
  the caller selects which one.
"""

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from labelgov.errors import InvalidRevertError
from labelgov.labels import canonical_label_hash
from labelgov.models.history import HistoryChangeType, LabelHistoryEntry
from labelgov.models.resource import GceResource

logger = logging.getLogger(__name__)


def _compute_signature(entry: LabelHistoryEntry) -> str:
    """sha256 over the entry with its own signature zeroed."""
    entry_dict = entry.model_dump(mode="json")
    entry_dict["signature"] = ""
    entry_bytes = json.dumps(entry_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(entry_bytes).hexdigest()


class AuditTrailRecorder:
    """
    In-memory history arena. Durable storage of the entries is the
    inventory integration's responsibility.
    """

    def __init__(self):
        self._entries: Dict[str, List[LabelHistoryEntry]] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, resource_id: str) -> threading.RLock:
        """
        The resource's append lock. Re-entrant, so a caller can hold it
        across its label write and the matching `record` call.
        """
        with self._locks_guard:
            lock = self._locks.get(resource_id)
            if lock is None:
                lock = self._locks[resource_id] = threading.RLock()
            return lock

    def record(
        self,
        resource: GceResource,
        previous_labels: Mapping[str, str],
        new_labels: Mapping[str, str],
        actor: str,
        change_type: HistoryChangeType,
        reason: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> LabelHistoryEntry:
        """Append one entry and return it with its signature and chain link."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        with self.lock_for(resource.id):
            with self._locks_guard:
                history = self._entries.setdefault(resource.id, [])

            if change_type == HistoryChangeType.REVERT:
                target = canonical_label_hash(new_labels)
                if not any(canonical_label_hash(e.previous_labels) == target for e in history):
                    raise InvalidRevertError(
                        f"Resource {resource.id}: revert labels do not match any "
                        f"earlier entry's previous labels"
                    )

            unsigned = LabelHistoryEntry(
                resource_id=resource.id,
                timestamp=timestamp,
                actor=actor,
                previous_labels=dict(previous_labels),
                new_labels=dict(new_labels),
                change_type=change_type,
                reason=reason,
                prior_entry_hash=history[-1].signature if history else None,
            )
            entry = unsigned.model_copy(update={"signature": _compute_signature(unsigned)})
            history.append(entry)

        logger.info(
            "Recorded %s on %s by %s", change_type.value, resource.id, actor
        )
        return entry

    def history(self, resource_id: str, newest_first: bool = True) -> List[LabelHistoryEntry]:
        """A copy of the resource's entries. Display order is newest first."""
        with self._locks_guard:
            known = resource_id in self._entries
        if not known:
            return []
        with self.lock_for(resource_id):
            entries = list(self._entries.get(resource_id, []))
        return entries[::-1] if newest_first else entries

    def find(self, resource_id: str, signature: str) -> Optional[LabelHistoryEntry]:
        """Look up one entry by its signature."""
        return next(
            (e for e in self.history(resource_id, newest_first=False) if e.signature == signature),
            None,
        )

    def query_by_actor(self, actor: str) -> List[LabelHistoryEntry]:
        return [e for e in self._all_entries() if e.actor == actor]

    def query_by_change_type(self, change_type: HistoryChangeType) -> List[LabelHistoryEntry]:
        return [e for e in self._all_entries() if e.change_type == change_type]

    def _all_entries(self) -> List[LabelHistoryEntry]:
        with self._locks_guard:
            resource_ids = sorted(self._entries)
        entries = []
        for resource_id in resource_ids:
            entries.extend(self.history(resource_id, newest_first=False))
        return entries

    def count(self, resource_id: Optional[str] = None) -> int:
        if resource_id is not None:
            return len(self.history(resource_id))
        return len(self._all_entries())

    def verify_chain_integrity(self, resource_id: Optional[str] = None) -> bool:
        """Verify no entry has been tampered with and every chain link holds."""
        with self._locks_guard:
            resource_ids = [resource_id] if resource_id else sorted(self._entries)

        for rid in resource_ids:
            prior_signature = None
            for entry in self.history(rid, newest_first=False):
                if entry.signature != _compute_signature(entry):
                    logger.error("Signature mismatch in history of %s", rid)
                    return False
                if entry.prior_entry_hash != prior_signature:
                    logger.error("Broken chain link in history of %s", rid)
                    return False
                prior_signature = entry.signature
        return True
