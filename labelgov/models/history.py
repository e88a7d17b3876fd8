"""Label History Entry — one immutable audit record per committed label change."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict


class HistoryChangeType(str, Enum):
    UPDATE = "UPDATE"                       # Direct manual edit
    APPLY_PROPOSAL = "APPLY_PROPOSAL"       # Pipeline or suggestion output committed
    REVERT = "REVERT"                       # Restores an earlier entry's previous_labels
    BATCH_UPDATE = "BATCH_UPDATE"           # Multi-resource pipeline commit


class LabelHistoryEntry(BaseModel):
    """
    Audit entry. Never edited or removed once appended.

    Entries for one resource form a hash chain: `signature` covers every
    other field, and `prior_entry_hash` holds the previous entry's signature.
    """

    model_config = ConfigDict(frozen=True)

    resource_id: str
    timestamp: datetime
    actor: str
    previous_labels: Dict[str, str]
    new_labels: Dict[str, str]
    change_type: HistoryChangeType
    reason: Optional[str] = None

    # INTEGRITY
    signature: str = ""
    prior_entry_hash: Optional[str] = None
