"""Tests for the Governance Coordinator — the end-to-end governance sequence."""

import threading
import time
from datetime import datetime, timezone

import pytest

from labelgov.coordinator import GovernanceCoordinator
from labelgov.drift.timeline import capture
from labelgov.errors import ConfigurationError, ConflictError, ResourceNotFoundError
from labelgov.inventory.store import InMemoryInventory
from labelgov.models.history import HistoryChangeType
from labelgov.models.pipeline import (
    Casing,
    GroupMapping,
    LabelOperation,
    OperationConfig,
    OperationType,
)
from labelgov.models.policy import GovernancePolicy, RuleConfig, RuleParams, RuleType, Severity
from labelgov.models.resource import GceResource, ResourceType
from labelgov.models.timeline import ChangeType
from labelgov.settings import EngineSettings


def _make_resource(resource_id: str, name: str, labels: dict = None) -> GceResource:
    return GceResource(
        id=resource_id,
        name=name,
        type=ResourceType.INSTANCE,
        zone="us-central1-a",
        status="RUNNING",
        labels=labels or {},
    )


def _extract_pipeline():
    return [
        LabelOperation(
            id="extract",
            type=OperationType.EXTRACT_REGEX,
            config=OperationConfig(
                regex=r"^(\w+)-(\w+)-",
                groups=[GroupMapping(index=1, target_key="environment"),
                        GroupMapping(index=2, target_key="app")],
            ),
        ),
        LabelOperation(
            id="lower",
            type=OperationType.CASE_TRANSFORM,
            config=OperationConfig(casing=Casing.LOWERCASE),
        ),
    ]


def _required(key: str, severity: Severity = Severity.CRITICAL) -> GovernancePolicy:
    return GovernancePolicy(
        id=f"require-{key}",
        name=f"Require {key}",
        severity=severity,
        rule_config=RuleConfig(type=RuleType.REQUIRED_LABEL, params=RuleParams(key=key)),
    )


class TestCommitPipeline:
    def setup_method(self):
        self.inventory = InMemoryInventory([
            _make_resource("r1", "prod-payment-service-01"),
            _make_resource("r2", "dev-search-api-02"),
            _make_resource("r3", "bastion", {"team": "ops"}),
        ])
        self.coordinator = GovernanceCoordinator(
            self.inventory, settings=EngineSettings(batch_max_workers=2),
        )

    def test_preview_writes_nothing(self):
        result = self.coordinator.preview(_extract_pipeline(), ["r1"])

        assert result.proposed["r1"] == {"app": "payment", "environment": "prod"}
        assert self.inventory.get_resource("r1").labels == {}
        assert self.coordinator.recorder.count() == 0

    def test_batch_commit(self):
        report = self.coordinator.commit_pipeline(
            _extract_pipeline(), ["r1", "r2", "r3"], actor="alice", reason="standardize",
        )

        assert report.succeeded == ["r1", "r2"]
        assert report.unchanged == ["r3"]
        assert self.inventory.get_resource("r2").labels == {"app": "search", "environment": "dev"}
        assert all(e.change_type == HistoryChangeType.BATCH_UPDATE for e in report.entries)
        assert self.coordinator.recorder.count("r3") == 0

    def test_single_resource_commit_is_apply_proposal(self):
        report = self.coordinator.commit_pipeline(_extract_pipeline(), ["r1"], actor="alice")
        assert report.entries[0].change_type == HistoryChangeType.APPLY_PROPOSAL
        assert report.entries[0].previous_labels == {}

    def test_unknown_resource_reported(self):
        report = self.coordinator.commit_pipeline(_extract_pipeline(), ["r1", "ghost"], actor="alice")

        assert report.succeeded == ["r1"]
        assert report.failed[0].id == "ghost"

    def test_invalid_labels_rejected(self):
        pipeline = [LabelOperation(
            id="bad", type=OperationType.REPLACE,
            config=OperationConfig(key="Env", value="Prod"),
        )]

        report = self.coordinator.commit_pipeline(pipeline, ["r1"], actor="alice")

        assert report.succeeded == []
        assert "Env" in report.failed[0].reason
        assert self.inventory.get_resource("r1").labels == {}


class TestLabelEdits:
    def setup_method(self):
        self.inventory = InMemoryInventory([_make_resource("r1", "web-01", {"env": "dev"})])
        self.coordinator = GovernanceCoordinator(self.inventory)

    def test_update_with_stale_fingerprint_conflicts(self):
        seen = self.inventory.get_resource("r1").label_fingerprint
        self.coordinator.update_labels("r1", {"env": "staging"}, actor="bob")

        with pytest.raises(ConflictError):
            self.coordinator.update_labels("r1", {"env": "prod"}, actor="alice", fingerprint=seen)

        assert self.inventory.get_resource("r1").labels == {"env": "staging"}
        assert self.coordinator.recorder.count("r1") == 1

    def test_update_records_previous_labels(self):
        entry = self.coordinator.update_labels("r1", {"env": "prod"}, actor="alice")

        assert entry.change_type == HistoryChangeType.UPDATE
        assert entry.previous_labels == {"env": "dev"}
        assert entry.new_labels == {"env": "prod"}

    def test_invalid_labels_raise(self):
        with pytest.raises(ConfigurationError):
            self.coordinator.update_labels("r1", {"Env": "dev"}, actor="alice")

    def test_apply_proposal(self):
        entry = self.coordinator.apply_proposal("r1", {"env": "dev", "owner": "core"}, actor="alice")
        assert entry.change_type == HistoryChangeType.APPLY_PROPOSAL

    def test_revert(self):
        change = self.coordinator.update_labels("r1", {"env": "prod"}, actor="alice")

        revert = self.coordinator.revert("r1", change.signature, actor="bob", reason="rollback")

        assert revert.change_type == HistoryChangeType.REVERT
        assert self.inventory.get_resource("r1").labels == {"env": "dev"}
        assert self.coordinator.recorder.verify_chain_integrity("r1")

    def test_revert_unknown_entry(self):
        with pytest.raises(ResourceNotFoundError):
            self.coordinator.revert("r1", "nope", actor="bob")


class InterleavingInventory(InMemoryInventory):
    """Starts a second writer right after the first write lands."""

    def __init__(self, resources):
        super().__init__(resources)
        self.coordinator = None
        self.second_writer = None

    def write_labels(self, resource_id, labels, fingerprint):
        updated = super().write_labels(resource_id, labels, fingerprint)
        if self.second_writer is None:
            started = threading.Event()

            def bob():
                started.set()
                self.coordinator.update_labels(resource_id, {"env": "prod"}, actor="bob")

            self.second_writer = threading.Thread(target=bob)
            self.second_writer.start()
            started.wait()
            time.sleep(0.05)
        return updated


class TestConcurrentWriters:
    def test_history_keeps_write_order(self):
        inventory = InterleavingInventory([_make_resource("r1", "web-01", {"env": "dev"})])
        coordinator = GovernanceCoordinator(inventory)
        inventory.coordinator = coordinator

        coordinator.update_labels("r1", {"env": "staging"}, actor="alice")
        inventory.second_writer.join()

        history = coordinator.recorder.history("r1", newest_first=False)
        assert [e.actor for e in history] == ["alice", "bob"]
        assert history[1].previous_labels == history[0].new_labels
        assert inventory.get_resource("r1").labels == {"env": "prod"}
        assert coordinator.recorder.verify_chain_integrity("r1")


class TestGovernanceCycle:
    def setup_method(self):
        self.inventory = InMemoryInventory([
            _make_resource("r1", "prod-payment-service-01"),
            _make_resource("r2", "bastion"),
        ])
        self.coordinator = GovernanceCoordinator(self.inventory)
        self.taken_at = datetime(2024, 6, 1, tzinfo=timezone.utc)

    def test_run_cycle(self):
        timeline = [capture(self.inventory.list_resources(), self.taken_at)]

        report = self.coordinator.run_cycle(
            policies=[_required("environment")],
            timeline=timeline,
            pipeline=_extract_pipeline(),
            actor="scheduler",
        )

        assert report.commit.succeeded == ["r1"]
        assert report.policies.violations["r1"] == []
        assert [v.policy_id for v in report.policies.violations["r2"]] == ["require-environment"]
        by_id = {d.id: d for d in report.drift}
        assert by_id["r1"].change_type == ChangeType.MODIFIED
        assert by_id["r2"].change_type == ChangeType.UNCHANGED

    def test_cycle_without_pipeline_or_timeline(self):
        report = self.coordinator.run_cycle(policies=[_required("environment")])

        assert report.commit is None
        assert report.drift == []
        assert len(report.policies.succeeded) == 2

    def test_governed_resources(self):
        timeline = [capture(self.inventory.list_resources(), self.taken_at)]
        self.coordinator.update_labels("r2", {"environment": "production"}, actor="alice")

        resources = {r.id: r for r in self.coordinator.governed_resources([_required("environment")], timeline)}

        assert resources["r1"].violations[0].policy_id == "require-environment"
        assert resources["r1"].drift_status.value == "SYNCED"
        assert resources["r2"].violations == []
        assert resources["r2"].drift_status.value == "DRIFTED"
