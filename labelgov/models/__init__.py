"""Label governance data models."""

from labelgov.models.history import HistoryChangeType, LabelHistoryEntry
from labelgov.models.pipeline import (
    Casing,
    GroupMapping,
    LabelOperation,
    MatchOperator,
    OperationConfig,
    OperationType,
    SavedPipeline,
)
from labelgov.models.policy import (
    GovernancePolicy,
    PolicyViolation,
    RuleConfig,
    RuleParams,
    RuleType,
    Severity,
    TaxonomyRule,
)
from labelgov.models.resource import DriftStatus, GceResource, LabelMapping, ResourceType
from labelgov.models.results import (
    CommitReport,
    EvaluationFault,
    FailedResource,
    GovernanceCycleReport,
    LabelChange,
    PipelineBatchResult,
    PolicyBatchResult,
)
from labelgov.models.timeline import (
    ChangeType,
    DiffResult,
    ResourceSnapshot,
    TimelineDiff,
    TimelineEntry,
)

__all__ = [
    "Casing",
    "ChangeType",
    "CommitReport",
    "DiffResult",
    "DriftStatus",
    "EvaluationFault",
    "FailedResource",
    "GceResource",
    "GovernanceCycleReport",
    "GovernancePolicy",
    "GroupMapping",
    "HistoryChangeType",
    "LabelChange",
    "LabelHistoryEntry",
    "LabelMapping",
    "LabelOperation",
    "MatchOperator",
    "OperationConfig",
    "OperationType",
    "PipelineBatchResult",
    "PolicyBatchResult",
    "PolicyViolation",
    "ResourceSnapshot",
    "ResourceType",
    "RuleConfig",
    "RuleParams",
    "RuleType",
    "SavedPipeline",
    "Severity",
    "TaxonomyRule",
    "TimelineDiff",
    "TimelineEntry",
]
