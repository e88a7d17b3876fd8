"""Batch results — partial-success structures returned by every multi-resource call."""

from typing import Dict, List, Optional

from pydantic import BaseModel

from labelgov.models.history import LabelHistoryEntry
from labelgov.models.policy import PolicyViolation
from labelgov.models.timeline import DiffResult


class FailedResource(BaseModel):
    id: str
    reason: str


class LabelChange(BaseModel):
    """One key-level difference between current and proposed labels."""

    key: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    kind: str                               # "ADD" | "REMOVE" | "MODIFY"


class PipelineBatchResult(BaseModel):
    proposed: Dict[str, Dict[str, str]] = {}
    changes: Dict[str, List[LabelChange]] = {}
    succeeded: List[str] = []
    failed: List[FailedResource] = []


class EvaluationFault(BaseModel):
    """A custom policy predicate raised. Diagnostic only, never a violation."""

    policy_id: str
    resource_id: str
    reason: str


class PolicyBatchResult(BaseModel):
    violations: Dict[str, List[PolicyViolation]] = {}
    succeeded: List[str] = []
    failed: List[FailedResource] = []
    faults: List[EvaluationFault] = []


class CommitReport(BaseModel):
    succeeded: List[str] = []
    unchanged: List[str] = []               # Proposal equal to current labels
    failed: List[FailedResource] = []
    entries: List[LabelHistoryEntry] = []


class GovernanceCycleReport(BaseModel):
    """Output of one explicit apply → commit → evaluate → diff sequence."""

    commit: Optional[CommitReport] = None
    policies: PolicyBatchResult
    drift: List[DiffResult] = []
