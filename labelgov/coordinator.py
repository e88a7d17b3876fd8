"""
Governance Coordinator — the explicit, caller-driven sequence over the engine.

    apply pipeline → commit (inventory write + audit entry) → evaluate policies → diff drift

Each step is a pure call on the evaluators except the commit, which goes
through the inventory's fingerprint check and appends one history entry per
successful label change.
"""

import logging
from typing import List, Mapping, Optional, Sequence

from labelgov.audit.recorder import AuditTrailRecorder
from labelgov.drift.detector import DriftDetector, latest_entry
from labelgov.errors import (
    ConfigurationError,
    ConflictError,
    LabelGovernanceError,
    ResourceNotFoundError,
)
from labelgov.inventory.commit import RetryConfig, commit_labels
from labelgov.inventory.store import InventorySource
from labelgov.labels import validate_labels
from labelgov.models.history import HistoryChangeType, LabelHistoryEntry
from labelgov.models.policy import GovernancePolicy
from labelgov.models.resource import GceResource
from labelgov.models.results import (
    CommitReport,
    FailedResource,
    GovernanceCycleReport,
    PipelineBatchResult,
    PolicyBatchResult,
)
from labelgov.models.timeline import DiffResult, TimelineEntry
from labelgov.pipeline.evaluator import Pipeline, PipelineEvaluator
from labelgov.policy.evaluator import PolicyEvaluator
from labelgov.settings import EngineSettings

logger = logging.getLogger(__name__)


class GovernanceCoordinator:
    """Wires the evaluators, the recorder and an inventory source together."""

    def __init__(
        self,
        inventory: InventorySource,
        recorder: Optional[AuditTrailRecorder] = None,
        pipeline_evaluator: Optional[PipelineEvaluator] = None,
        policy_evaluator: Optional[PolicyEvaluator] = None,
        drift_detector: Optional[DriftDetector] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.settings = settings or EngineSettings()
        self.inventory = inventory
        self.recorder = recorder or AuditTrailRecorder()
        self.pipelines = pipeline_evaluator or PipelineEvaluator(
            max_workers=self.settings.batch_max_workers
        )
        self.policies = policy_evaluator or PolicyEvaluator(
            max_workers=self.settings.batch_max_workers
        )
        self.drift = drift_detector or DriftDetector()
        self.retry = RetryConfig(
            max_attempts=self.settings.commit_max_attempts,
            initial_delay=self.settings.commit_initial_delay,
            max_delay=self.settings.commit_max_delay,
        )

    def _resources(self, resource_ids: Optional[Sequence[str]]) -> List[GceResource]:
        if resource_ids is None:
            return self.inventory.list_resources()
        return [self.inventory.get_resource(rid) for rid in resource_ids]

    # --- Commit path ---

    def _commit(
        self,
        resource: GceResource,
        new_labels: Mapping[str, str],
        actor: str,
        change_type: HistoryChangeType,
        reason: Optional[str],
    ) -> LabelHistoryEntry:
        """
        Write with the read fingerprint, then append the audit entry. Both
        happen under the resource's append lock so history keeps write order.
        """
        if self.settings.validate_labels_on_commit:
            problems = validate_labels(new_labels)
            if problems:
                detail = "; ".join(f"{k}: {v}" for k, v in problems.items())
                raise ConfigurationError(f"Invalid labels for {resource.id}: {detail}")

        with self.recorder.lock_for(resource.id):
            commit_labels(self.inventory, resource, new_labels, retry=self.retry)
            return self.recorder.record(
                resource,
                previous_labels=resource.labels,
                new_labels=new_labels,
                actor=actor,
                change_type=change_type,
                reason=reason,
            )

    def preview(
        self, pipeline: Pipeline, resource_ids: Optional[Sequence[str]] = None
    ) -> PipelineBatchResult:
        """Proposed labels and key-level changes. Nothing is written."""
        return self.pipelines.apply_batch(self._resources(resource_ids), pipeline)

    def commit_pipeline(
        self,
        pipeline: Pipeline,
        resource_ids: Sequence[str],
        actor: str,
        reason: Optional[str] = None,
    ) -> CommitReport:
        """
        Evaluate and commit a pipeline across resources.

        Multi-resource commits are recorded as BATCH_UPDATE, single ones as
        APPLY_PROPOSAL. Every per-resource failure, conflicts included, lands
        in `failed`; the rest of the batch proceeds.
        """
        report = CommitReport()
        resources = []
        for rid in resource_ids:
            try:
                resources.append(self.inventory.get_resource(rid))
            except ResourceNotFoundError as e:
                report.failed.append(FailedResource(id=rid, reason=str(e)))

        evaluated = self.pipelines.apply_batch(resources, pipeline)
        report.failed.extend(evaluated.failed)

        change_type = (
            HistoryChangeType.BATCH_UPDATE if len(resource_ids) > 1
            else HistoryChangeType.APPLY_PROPOSAL
        )

        for resource in resources:
            if resource.id not in evaluated.proposed:
                continue
            if not evaluated.changes[resource.id]:
                report.unchanged.append(resource.id)
                continue
            try:
                entry = self._commit(
                    resource, evaluated.proposed[resource.id], actor, change_type, reason
                )
            except ConflictError as e:
                logger.info("Conflict committing %s; caller must re-read", resource.id)
                report.failed.append(FailedResource(id=resource.id, reason=str(e)))
                continue
            except LabelGovernanceError as e:
                report.failed.append(FailedResource(id=resource.id, reason=str(e)))
                continue
            report.succeeded.append(resource.id)
            report.entries.append(entry)

        logger.info(
            "Pipeline commit by %s: %d committed, %d unchanged, %d failed",
            actor, len(report.succeeded), len(report.unchanged), len(report.failed),
        )
        return report

    def update_labels(
        self,
        resource_id: str,
        labels: Mapping[str, str],
        actor: str,
        reason: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> LabelHistoryEntry:
        """
        Direct manual edit (UPDATE). Pass the fingerprint the editor read to
        have a concurrent change surface as ConflictError.
        """
        resource = self.inventory.get_resource(resource_id)
        if fingerprint is not None:
            resource = resource.model_copy(update={"label_fingerprint": fingerprint})
        return self._commit(resource, labels, actor, HistoryChangeType.UPDATE, reason)

    def apply_proposal(
        self,
        resource_id: str,
        proposed_labels: Mapping[str, str],
        actor: str,
        reason: Optional[str] = None,
    ) -> LabelHistoryEntry:
        """Commit externally proposed labels, e.g. suggestion output (APPLY_PROPOSAL)."""
        resource = self.inventory.get_resource(resource_id)
        return self._commit(
            resource, proposed_labels, actor, HistoryChangeType.APPLY_PROPOSAL, reason
        )

    def revert(
        self,
        resource_id: str,
        entry_signature: str,
        actor: str,
        reason: Optional[str] = None,
    ) -> LabelHistoryEntry:
        """Restore the labels that the caller-selected entry replaced (REVERT)."""
        target = self.recorder.find(resource_id, entry_signature)
        if target is None:
            raise ResourceNotFoundError(
                f"No history entry {entry_signature} for resource {resource_id}"
            )
        resource = self.inventory.get_resource(resource_id)
        return self._commit(
            resource, target.previous_labels, actor, HistoryChangeType.REVERT, reason
        )

    # --- Evaluation ---

    def evaluate_policies(
        self,
        policies: Sequence[GovernancePolicy],
        resource_ids: Optional[Sequence[str]] = None,
    ) -> PolicyBatchResult:
        return self.policies.evaluate_batch(self._resources(resource_ids), policies)

    def detect_drift(self, timeline: Sequence[TimelineEntry]) -> List[DiffResult]:
        """Diff the latest timeline entry against the live inventory."""
        baseline = latest_entry(timeline)
        if baseline is None:
            return []
        return self.drift.diff(baseline.resources, self.inventory.list_resources())

    def governed_resources(
        self,
        policies: Sequence[GovernancePolicy],
        timeline: Sequence[TimelineEntry] = (),
    ) -> List[GceResource]:
        """Copies of the live resources with violations and drift status filled in."""
        resources = self.drift.annotate(self.inventory.list_resources(), timeline)
        evaluated = self.policies.evaluate_batch(resources, policies)
        return [
            r.model_copy(update={"violations": evaluated.violations.get(r.id, [])})
            for r in resources
        ]

    def run_cycle(
        self,
        policies: Sequence[GovernancePolicy],
        timeline: Sequence[TimelineEntry] = (),
        pipeline: Optional[Pipeline] = None,
        resource_ids: Optional[Sequence[str]] = None,
        actor: str = "system",
        reason: Optional[str] = None,
    ) -> GovernanceCycleReport:
        """
        One explicit pass: commit the pipeline (when given) over the selected
        resources, then evaluate policies and diff drift on the updated set.
        """
        commit = None
        if pipeline is not None:
            ids = resource_ids if resource_ids is not None else [
                r.id for r in self.inventory.list_resources()
            ]
            commit = self.commit_pipeline(pipeline, ids, actor, reason)

        return GovernanceCycleReport(
            commit=commit,
            policies=self.evaluate_policies(policies),
            drift=self.detect_drift(timeline),
        )
