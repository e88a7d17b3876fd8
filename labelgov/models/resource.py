"""Resource — the inventory item whose labels the engine governs."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from labelgov.models.policy import PolicyViolation

LabelMapping = Dict[str, str]


class ResourceType(str, Enum):
    INSTANCE = "instance"
    DISK = "disk"
    SNAPSHOT = "snapshot"
    IMAGE = "image"
    SERVERLESS_SERVICE = "serverless-service"
    MANAGED_DATABASE = "managed-database"
    BUCKET = "bucket"
    CLUSTER = "cluster"


class DriftStatus(str, Enum):
    DRIFTED = "DRIFTED"
    SYNCED = "SYNCED"
    UNKNOWN = "UNKNOWN"


class GceResource(BaseModel):
    """A labelled cloud resource as supplied by the inventory source."""

    id: str                                 # Stable across time
    name: str
    type: ResourceType
    zone: str
    status: str                             # Provider-reported, free-form
    labels: LabelMapping = {}
    label_fingerprint: str = ""             # Required for any write
    machine_type: Optional[str] = None
    created_at: Optional[datetime] = None

    # Derived, never persisted
    violations: List[PolicyViolation] = []
    drift_status: DriftStatus = DriftStatus.UNKNOWN
