"""
Drift Detector — classifies differences between recorded snapshots and live resources.

Behavioral Contract:
- Resources are matched by id, the only identifier stable across time
- ADDED: present only. REMOVED: snapshot only.
- MODIFIED: canonical label hash or status differs, with details naming what changed
- UNCHANGED otherwise
- Each timeline entry is diffed independently against the present set
- Inputs are never mutated
"""

from typing import Dict, List, Optional, Sequence

from labelgov.labels import canonical_label_hash, parse_label_hash
from labelgov.models.resource import DriftStatus, GceResource
from labelgov.models.timeline import (
    ChangeType,
    DiffResult,
    ResourceSnapshot,
    TimelineDiff,
    TimelineEntry,
)


def _stored_hash(snapshot: ResourceSnapshot) -> str:
    """
    Re-canonicalize a stored label hash when it is readable JSON, so hashes
    written with a different key order still compare equal.
    """
    parsed = parse_label_hash(snapshot.label_hash)
    if parsed is None:
        return snapshot.label_hash
    return canonical_label_hash(parsed)


def latest_entry(timeline: Sequence[TimelineEntry]) -> Optional[TimelineEntry]:
    if not timeline:
        return None
    return max(timeline, key=lambda e: e.timestamp)


class DriftDetector:
    """Stateless comparison of past snapshots against present resources."""

    def diff(
        self,
        past_snapshots: Sequence[ResourceSnapshot],
        present_resources: Sequence[GceResource],
    ) -> List[DiffResult]:
        past_by_id: Dict[str, ResourceSnapshot] = {s.id: s for s in past_snapshots}
        present_ids = {r.id for r in present_resources}
        results = []

        for resource in present_resources:
            snapshot = past_by_id.get(resource.id)
            if snapshot is None:
                results.append(DiffResult(
                    id=resource.id,
                    name=resource.name,
                    type=resource.type,
                    change_type=ChangeType.ADDED,
                    details="Resource created since snapshot",
                    present=resource,
                ))
            else:
                results.append(self._compare(snapshot, resource))

        for snapshot in past_snapshots:
            if snapshot.id in present_ids:
                continue
            results.append(DiffResult(
                id=snapshot.id,
                name=snapshot.name,
                type=snapshot.type,
                change_type=ChangeType.REMOVED,
                details="Resource no longer present",
                past=snapshot,
            ))

        return results

    def _compare(self, snapshot: ResourceSnapshot, resource: GceResource) -> DiffResult:
        labels_differ = _stored_hash(snapshot) != canonical_label_hash(resource.labels)
        status_differs = snapshot.status != resource.status

        if not labels_differ and not status_differs:
            return DiffResult(
                id=resource.id,
                name=resource.name,
                type=resource.type,
                change_type=ChangeType.UNCHANGED,
                details="No changes",
                past=snapshot,
                present=resource,
            )

        parts = []
        added: List[str] = []
        removed: List[str] = []
        changed: List[str] = []

        if labels_differ:
            past_labels = parse_label_hash(snapshot.label_hash)
            if past_labels is None:
                parts.append("Labels changed (stored label hash unreadable)")
            else:
                now = resource.labels
                added = sorted(k for k in now if k not in past_labels)
                removed = sorted(k for k in past_labels if k not in now)
                changed = sorted(k for k in now if k in past_labels and now[k] != past_labels[k])
                label_parts = []
                if added:
                    label_parts.append(f"added {', '.join(added)}")
                if removed:
                    label_parts.append(f"removed {', '.join(removed)}")
                if changed:
                    label_parts.append(
                        "changed " + ", ".join(f"{k} ({past_labels[k]} → {now[k]})" for k in changed)
                    )
                parts.append("Labels " + "; ".join(label_parts))

        if status_differs:
            parts.append(f"Status {snapshot.status} → {resource.status}")

        return DiffResult(
            id=resource.id,
            name=resource.name,
            type=resource.type,
            change_type=ChangeType.MODIFIED,
            details=". ".join(parts),
            past=snapshot,
            present=resource,
            labels_added=added,
            labels_removed=removed,
            labels_changed=changed,
            status_changed=status_differs,
        )

    def diff_timeline(
        self,
        timeline: Sequence[TimelineEntry],
        present_resources: Sequence[GceResource],
    ) -> List[TimelineDiff]:
        """One independent diff per entry, in chronological order."""
        return [
            TimelineDiff(
                date=entry.date,
                timestamp=entry.timestamp,
                diffs=self.diff(entry.resources, present_resources),
            )
            for entry in sorted(timeline, key=lambda e: e.timestamp)
        ]

    def drift_status(
        self, resource: GceResource, entry: Optional[TimelineEntry]
    ) -> DriftStatus:
        """
        Label drift against one baseline entry. No baseline → UNKNOWN;
        absent from the baseline → DRIFTED.
        """
        if entry is None:
            return DriftStatus.UNKNOWN
        snapshot = next((s for s in entry.resources if s.id == resource.id), None)
        if snapshot is None:
            return DriftStatus.DRIFTED
        if _stored_hash(snapshot) != canonical_label_hash(resource.labels):
            return DriftStatus.DRIFTED
        return DriftStatus.SYNCED

    def annotate(
        self,
        resources: Sequence[GceResource],
        timeline: Sequence[TimelineEntry],
    ) -> List[GceResource]:
        """Copies of the resources with drift_status set against the latest entry."""
        baseline = latest_entry(timeline)
        return [
            r.model_copy(update={"drift_status": self.drift_status(r, baseline)})
            for r in resources
        ]
