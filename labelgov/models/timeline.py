"""Timeline — point-in-time resource snapshots and the diffs computed from them."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from labelgov.models.resource import GceResource, ResourceType


class ResourceSnapshot(BaseModel):
    """Identity-relevant fields of a resource at snapshot time. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: ResourceType
    status: str
    zone: str
    label_hash: str                         # Canonical serialization of labels
    meta: Optional[Dict[str, str]] = None


class TimelineEntry(BaseModel):
    date: str                               # YYYY-MM-DD
    timestamp: datetime
    resources: List[ResourceSnapshot] = []


class ChangeType(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    MODIFIED = "MODIFIED"
    UNCHANGED = "UNCHANGED"


class DiffResult(BaseModel):
    id: str
    name: str
    type: ResourceType
    change_type: ChangeType
    details: str
    past: Optional[ResourceSnapshot] = None
    present: Optional[GceResource] = None

    labels_added: List[str] = []
    labels_removed: List[str] = []
    labels_changed: List[str] = []
    status_changed: bool = False


class TimelineDiff(BaseModel):
    """Diffs of one timeline entry against the present resource set."""

    date: str
    timestamp: datetime
    diffs: List[DiffResult] = []
