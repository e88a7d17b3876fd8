"""Label Operations and Saved Pipelines — the user-authored transformation steps."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class OperationType(str, Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"
    REPLACE = "REPLACE"
    EXTRACT_REGEX = "EXTRACT_REGEX"
    PATTERN = "PATTERN"
    CASE_TRANSFORM = "CASE_TRANSFORM"
    NORMALIZE_VALUES = "NORMALIZE_VALUES"
    CONDITIONAL_SET = "CONDITIONAL_SET"


class Casing(str, Enum):
    LOWERCASE = "lowercase"
    UPPERCASE = "uppercase"


class MatchOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES_REGEX = "matches_regex"


class GroupMapping(BaseModel):
    """Maps a regex capture group index to a target label key."""

    model_config = ConfigDict(frozen=True)

    index: int
    target_key: str


class OperationConfig(BaseModel):
    """Type-specific configuration. Each operation type reads a subset."""

    model_config = ConfigDict(frozen=True)

    key: Optional[str] = None
    value: Optional[str] = None
    find: Optional[str] = None
    replace: Optional[str] = None
    regex: Optional[str] = None
    delimiter: Optional[str] = None         # Qualifier for "label:<key>" sources
    groups: List[GroupMapping] = []
    casing: Optional[Casing] = None
    target_key: Optional[str] = None
    value_map: Dict[str, str] = {}
    source_field: Optional[str] = None      # "name" | "type" | "zone" | "label:<key>"
    operator: Optional[MatchOperator] = None
    match_value: Optional[str] = None


class LabelOperation(BaseModel):
    """An immutable pipeline step."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: OperationType
    config: OperationConfig = OperationConfig()
    enabled: bool = True


class SavedPipeline(BaseModel):
    """A named, ordered operation sequence. Order is semantically significant."""

    id: str
    name: str
    description: Optional[str] = None
    operations: List[LabelOperation] = []
    created_at: datetime
    created_by: Optional[str] = None
