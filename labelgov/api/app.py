"""
Label Governance API — FastAPI endpoints.

Exposes the engine via a REST API for:
- Resource inspection (with violations and drift status)
- Pipeline preview and commit
- Manual label edits, proposals and reverts
- Label history and audit chain verification
- Policy management and evaluation
- Timeline snapshots and drift
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from labelgov.audit.recorder import AuditTrailRecorder
from labelgov.coordinator import GovernanceCoordinator
from labelgov.drift.timeline import capture, find_entry, merge_entry
from labelgov.errors import (
    ConfigurationError,
    ConflictError,
    InvalidRevertError,
    ResourceNotFoundError,
)
from labelgov.inventory.store import InMemoryInventory, InventorySource
from labelgov.models.history import HistoryChangeType
from labelgov.models.pipeline import LabelOperation
from labelgov.models.policy import GovernancePolicy
from labelgov.models.timeline import TimelineEntry
from labelgov.pipeline.analysis import analyze_labels
from labelgov.policy.defaults import default_policies
from labelgov.policy.evaluator import PolicyEvaluator, PolicyRegistry
from labelgov.settings import EngineSettings, configure_logging


# --- Request Models ---

class PipelineRequest(BaseModel):
    operations: List[LabelOperation]
    resource_ids: Optional[List[str]] = None


class PipelineCommitRequest(PipelineRequest):
    actor: str
    reason: Optional[str] = None


class LabelUpdateRequest(BaseModel):
    labels: Dict[str, str]
    actor: str
    fingerprint: Optional[str] = None
    reason: Optional[str] = None


class ProposalRequest(BaseModel):
    labels: Dict[str, str]
    actor: str
    reason: Optional[str] = None


class RevertRequest(BaseModel):
    signature: str
    actor: str
    reason: Optional[str] = None


class SnapshotRequest(BaseModel):
    taken_at: Optional[datetime] = None


# --- Application Factory ---

def create_app(
    inventory: Optional[InventorySource] = None,
    recorder: Optional[AuditTrailRecorder] = None,
    settings: Optional[EngineSettings] = None,
    registry: Optional[PolicyRegistry] = None,
    policies: Optional[List[GovernancePolicy]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Label Governance API",
        description="Label pipelines, policy evaluation, drift detection and audit trail",
        version="0.1.0",
    )

    # Initialize components
    config = settings or EngineSettings()
    configure_logging(config)
    inv = inventory if inventory is not None else InMemoryInventory()
    coordinator = GovernanceCoordinator(
        inventory=inv,
        recorder=recorder,
        policy_evaluator=PolicyEvaluator(registry, max_workers=config.batch_max_workers),
        settings=config,
    )

    # Store components on app state for access in endpoints
    app.state.settings = config
    app.state.coordinator = coordinator
    app.state.policies = list(policies) if policies is not None else default_policies()
    app.state.timeline = []

    def _not_found(e: ResourceNotFoundError):
        return HTTPException(404, str(e))

    # === RESOURCES ===

    @app.get("/resources")
    def list_resources():
        """Live resources with violations and drift status filled in."""
        resources = coordinator.governed_resources(app.state.policies, app.state.timeline)
        return [r.model_dump(mode="json") for r in resources]

    @app.get("/resources/{resource_id}")
    def get_resource(resource_id: str):
        try:
            resource = inv.get_resource(resource_id)
        except ResourceNotFoundError as e:
            raise _not_found(e)
        annotated = coordinator.drift.annotate([resource], app.state.timeline)[0]
        violations = coordinator.policies.evaluate(annotated, app.state.policies)
        return annotated.model_copy(update={"violations": violations}).model_dump(mode="json")

    @app.get("/labels/analysis")
    def get_label_analysis():
        """Casing and synonym findings, each with a suggested operation."""
        return [f.model_dump(mode="json") for f in analyze_labels(inv.list_resources())]

    # === PIPELINES ===

    @app.post("/pipelines/preview")
    def preview_pipeline(req: PipelineRequest):
        """Proposed labels and per-key changes. Nothing is written."""
        try:
            coordinator.pipelines.validate(req.operations)
            result = coordinator.preview(req.operations, req.resource_ids)
        except ConfigurationError as e:
            raise HTTPException(422, str(e))
        except ResourceNotFoundError as e:
            raise _not_found(e)
        return result.model_dump(mode="json")

    @app.post("/pipelines/commit")
    def commit_pipeline(req: PipelineCommitRequest):
        try:
            coordinator.pipelines.validate(req.operations)
        except ConfigurationError as e:
            raise HTTPException(422, str(e))
        resource_ids = req.resource_ids
        if resource_ids is None:
            resource_ids = [r.id for r in inv.list_resources()]
        report = coordinator.commit_pipeline(
            req.operations, resource_ids, req.actor, req.reason
        )
        return report.model_dump(mode="json")

    # === LABEL CHANGES ===

    @app.put("/resources/{resource_id}/labels")
    def update_labels(resource_id: str, req: LabelUpdateRequest):
        """Manual edit. A stale fingerprint returns 409."""
        try:
            entry = coordinator.update_labels(
                resource_id, req.labels, req.actor, req.reason, req.fingerprint
            )
        except ResourceNotFoundError as e:
            raise _not_found(e)
        except ConflictError as e:
            raise HTTPException(409, str(e))
        except ConfigurationError as e:
            raise HTTPException(422, str(e))
        return entry.model_dump(mode="json")

    @app.post("/resources/{resource_id}/proposal")
    def apply_proposal(resource_id: str, req: ProposalRequest):
        try:
            entry = coordinator.apply_proposal(resource_id, req.labels, req.actor, req.reason)
        except ResourceNotFoundError as e:
            raise _not_found(e)
        except ConflictError as e:
            raise HTTPException(409, str(e))
        except ConfigurationError as e:
            raise HTTPException(422, str(e))
        return entry.model_dump(mode="json")

    @app.post("/resources/{resource_id}/revert")
    def revert_labels(resource_id: str, req: RevertRequest):
        """Restore the labels replaced by the history entry with this signature."""
        try:
            entry = coordinator.revert(resource_id, req.signature, req.actor, req.reason)
        except ResourceNotFoundError as e:
            raise _not_found(e)
        except ConflictError as e:
            raise HTTPException(409, str(e))
        except (ConfigurationError, InvalidRevertError) as e:
            raise HTTPException(422, str(e))
        return entry.model_dump(mode="json")

    # === AUDIT ===

    @app.get("/resources/{resource_id}/history")
    def get_history(resource_id: str):
        """Newest first."""
        return [e.model_dump(mode="json") for e in coordinator.recorder.history(resource_id)]

    @app.get("/audit/by-actor/{actor}")
    def get_history_by_actor(actor: str):
        return [e.model_dump(mode="json") for e in coordinator.recorder.query_by_actor(actor)]

    @app.get("/audit/by-type/{change_type}")
    def get_history_by_type(change_type: HistoryChangeType):
        entries = coordinator.recorder.query_by_change_type(change_type)
        return [e.model_dump(mode="json") for e in entries]

    @app.get("/audit/verify")
    def verify_audit():
        """Verify chain integrity."""
        return {
            "integrity_valid": coordinator.recorder.verify_chain_integrity(),
            "total_entries": coordinator.recorder.count(),
        }

    # === POLICIES ===

    @app.get("/policies")
    def get_policies():
        return [p.model_dump(mode="json") for p in app.state.policies]

    @app.put("/policies")
    def replace_policies(policies: List[GovernancePolicy]):
        """Replace the active policy set. Every policy is validated first."""
        try:
            for policy in policies:
                coordinator.policies.validate(policy)
        except ConfigurationError as e:
            raise HTTPException(422, str(e))
        app.state.policies = policies
        return [p.model_dump(mode="json") for p in policies]

    @app.post("/policies/evaluate")
    def evaluate_policies(resource_ids: Optional[List[str]] = None):
        try:
            result = coordinator.evaluate_policies(app.state.policies, resource_ids)
        except ResourceNotFoundError as e:
            raise _not_found(e)
        return result.model_dump(mode="json")

    # === TIMELINE & DRIFT ===

    @app.post("/timeline/snapshot")
    def take_timeline_snapshot(req: Optional[SnapshotRequest] = None):
        """Capture the live inventory and merge it into the held timeline."""
        taken_at = (req.taken_at if req else None) or datetime.now(timezone.utc)
        entry = capture(inv.list_resources(), taken_at)
        app.state.timeline = merge_entry(
            app.state.timeline,
            entry,
            schedule=config.snapshot_schedule,
            retention=config.timeline_retention,
        )
        return {
            "date": entry.date,
            "resources": len(entry.resources),
            "timeline_entries": len(app.state.timeline),
        }

    @app.get("/timeline")
    def get_timeline():
        return [
            {"date": e.date, "timestamp": e.timestamp.isoformat(), "resources": len(e.resources)}
            for e in app.state.timeline
        ]

    @app.get("/drift")
    def get_drift(date: Optional[str] = None):
        """Diff against the latest entry, or against the entry recorded on `date`."""
        timeline: List[TimelineEntry] = app.state.timeline
        if date is not None:
            entry = find_entry(timeline, date)
            if entry is None:
                raise HTTPException(404, "No snapshot for that date")
            timeline = [entry]
        return [d.model_dump(mode="json") for d in coordinator.detect_drift(timeline)]

    @app.get("/drift/timeline")
    def get_drift_timeline():
        """One diff per timeline entry, oldest first."""
        diffs = coordinator.drift.diff_timeline(app.state.timeline, inv.list_resources())
        return [d.model_dump(mode="json") for d in diffs]

    return app


# Default application instance
app = create_app()
