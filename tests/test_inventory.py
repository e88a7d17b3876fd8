"""Tests for the in-memory inventory and the retrying commit helper."""

import pytest

from labelgov.errors import ConflictError, ResourceNotFoundError, TransientInventoryError
from labelgov.inventory.commit import RetryConfig, commit_labels
from labelgov.inventory.store import InMemoryInventory
from labelgov.labels import label_changes, validate_labels
from labelgov.models.resource import GceResource, ResourceType


def _make_resource(resource_id: str = "vm-1", labels: dict = None) -> GceResource:
    return GceResource(
        id=resource_id,
        name=resource_id,
        type=ResourceType.INSTANCE,
        zone="us-central1-a",
        status="RUNNING",
        labels=labels or {},
    )


class FlakyInventory(InMemoryInventory):
    """Fails the first `failures` writes with a transient error."""

    def __init__(self, resources, failures: int):
        super().__init__(resources)
        self.failures = failures
        self.attempts = 0

    def write_labels(self, resource_id, labels, fingerprint):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise TransientInventoryError("connection reset")
        return super().write_labels(resource_id, labels, fingerprint)


class TestInMemoryInventory:
    def setup_method(self):
        self.inventory = InMemoryInventory([_make_resource(labels={"env": "dev"})])

    def test_upsert_assigns_fingerprint(self):
        resource = self.inventory.get_resource("vm-1")
        assert resource.label_fingerprint

    def test_write_with_current_fingerprint(self):
        resource = self.inventory.get_resource("vm-1")

        updated = self.inventory.write_labels("vm-1", {"env": "prod"}, resource.label_fingerprint)

        assert updated.labels == {"env": "prod"}
        assert updated.label_fingerprint != resource.label_fingerprint

    def test_stale_fingerprint_conflicts(self):
        stale = self.inventory.get_resource("vm-1")
        self.inventory.write_labels("vm-1", {"env": "prod"}, stale.label_fingerprint)

        with pytest.raises(ConflictError) as exc:
            self.inventory.write_labels("vm-1", {"env": "qa"}, stale.label_fingerprint)

        assert exc.value.resource_id == "vm-1"
        assert self.inventory.get_resource("vm-1").labels == {"env": "prod"}

    def test_unknown_resource(self):
        with pytest.raises(ResourceNotFoundError):
            self.inventory.get_resource("missing")

    def test_remove(self):
        assert self.inventory.remove("vm-1")
        assert self.inventory.list_resources() == []


class TestCommitLabels:
    def test_retries_transient_failures(self):
        inventory = FlakyInventory([_make_resource()], failures=2)
        delays = []

        updated = commit_labels(
            inventory, inventory.get_resource("vm-1"), {"env": "prod"},
            retry=RetryConfig(max_attempts=3, initial_delay=0.1),
            sleep=delays.append,
        )

        assert updated.labels == {"env": "prod"}
        assert inventory.attempts == 3
        assert delays == [0.1, 0.2]

    def test_gives_up_after_max_attempts(self):
        inventory = FlakyInventory([_make_resource()], failures=5)

        with pytest.raises(TransientInventoryError):
            commit_labels(
                inventory, inventory.get_resource("vm-1"), {"env": "prod"},
                retry=RetryConfig(max_attempts=2), sleep=lambda _: None,
            )
        assert inventory.attempts == 2

    def test_conflict_not_retried(self):
        inventory = FlakyInventory([_make_resource()], failures=0)
        stale = inventory.get_resource("vm-1")
        inventory.write_labels("vm-1", {"env": "qa"}, stale.label_fingerprint)

        with pytest.raises(ConflictError):
            commit_labels(inventory, stale, {"env": "prod"}, sleep=lambda _: None)
        assert inventory.attempts == 2


class TestLabelHelpers:
    def test_validate_labels(self):
        problems = validate_labels({"env": "prod", "Env": "dev", "team": "Core", "9x": "a"})
        assert set(problems) == {"Env", "team", "9x"}

    def test_label_changes(self):
        changes = label_changes({"a": "1", "b": "2"}, {"b": "3", "c": "4"})
        assert [(c.key, c.kind) for c in changes] == [("a", "REMOVE"), ("b", "MODIFY"), ("c", "ADD")]
