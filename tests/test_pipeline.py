"""Tests for the Operation Pipeline Evaluator."""

from datetime import datetime, timezone

import pytest

from labelgov.errors import ConfigurationError
from labelgov.models.pipeline import (
    Casing,
    GroupMapping,
    LabelOperation,
    MatchOperator,
    OperationConfig,
    OperationType,
    SavedPipeline,
)
from labelgov.models.resource import GceResource, ResourceType
from labelgov.pipeline.evaluator import PipelineEvaluator, resolve_tokens, validate_operation


def _make_resource(
    resource_id: str = "res_1",
    name: str = "prod-payment-service-01",
    labels: dict = None,
    zone: str = "us-central1-a",
) -> GceResource:
    return GceResource(
        id=resource_id,
        name=name,
        type=ResourceType.INSTANCE,
        zone=zone,
        status="RUNNING",
        labels=labels or {},
        machine_type="e2-medium",
        created_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
    )


def _op(op_id: str, op_type: OperationType, enabled: bool = True, **config) -> LabelOperation:
    return LabelOperation(id=op_id, type=op_type, config=OperationConfig(**config), enabled=enabled)


class TestOperationSemantics:
    def setup_method(self):
        self.evaluator = PipelineEvaluator(max_workers=2)

    def test_extract_regex_from_name(self):
        resource = _make_resource()
        pipeline = [_op(
            "extract", OperationType.EXTRACT_REGEX,
            regex=r"^(\w+)-(\w+)-service",
            groups=[GroupMapping(index=1, target_key="environment"),
                    GroupMapping(index=2, target_key="app")],
        )]

        labels = self.evaluator.apply_or_raise(resource, pipeline)

        assert labels == {"environment": "prod", "app": "payment"}

    def test_extract_regex_no_match_leaves_labels(self):
        resource = _make_resource(name="legacy01", labels={"team": "core"})
        pipeline = [_op(
            "extract", OperationType.EXTRACT_REGEX,
            regex=r"^(\w+)-(\w+)-",
            groups=[GroupMapping(index=1, target_key="environment")],
        )]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"team": "core"}

    def test_extract_regex_from_label_source(self):
        resource = _make_resource(labels={"owner": "alice@example"})
        pipeline = [_op(
            "extract", OperationType.EXTRACT_REGEX,
            source_field="label:owner",
            regex=r"^([a-z]+)@",
            groups=[GroupMapping(index=1, target_key="team-lead")],
        )]

        labels = self.evaluator.apply_or_raise(resource, pipeline)
        assert labels["team-lead"] == "alice"

    def test_add_does_not_overwrite(self):
        resource = _make_resource(labels={"env": "staging"})
        pipeline = [_op("add", OperationType.ADD, key="env", value="prod")]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"env": "staging"}

    def test_replace_overwrites(self):
        resource = _make_resource(labels={"env": "staging"})
        pipeline = [_op("rep", OperationType.REPLACE, key="env", value="prod")]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"env": "prod"}

    def test_remove_missing_key_is_noop(self):
        resource = _make_resource(labels={"env": "prod"})
        pipeline = [_op("rm", OperationType.REMOVE, key="owner")]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"env": "prod"}

    def test_pattern_on_missing_label_is_noop(self):
        resource = _make_resource(labels={"env": "prod"})
        pipeline = [_op("pat", OperationType.PATTERN, key="owner", find="_", replace="-")]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"env": "prod"}

    def test_pattern_replaces_substring(self):
        resource = _make_resource(labels={"team": "data_platform_core"})
        pipeline = [_op("pat", OperationType.PATTERN, key="team", find="_", replace="-")]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"team": "data-platform-core"}

    def test_case_transform_single_key(self):
        resource = _make_resource(labels={"env": "PROD", "team": "Core"})
        pipeline = [_op("case", OperationType.CASE_TRANSFORM, target_key="env", casing=Casing.LOWERCASE)]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"env": "prod", "team": "Core"}

    def test_case_transform_all_values(self):
        resource = _make_resource(labels={"env": "prod", "team": "core"})
        pipeline = [_op("case", OperationType.CASE_TRANSFORM, casing=Casing.UPPERCASE)]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"env": "PROD", "team": "CORE"}

    def test_normalize_values(self):
        resource = _make_resource(labels={"Env": "dev"})
        pipeline = [_op(
            "norm", OperationType.NORMALIZE_VALUES,
            key="Env", value_map={"dev": "development"},
        )]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"Env": "development"}

    def test_normalize_unmapped_value_untouched(self):
        resource = _make_resource(labels={"env": "qa"})
        pipeline = [_op("norm", OperationType.NORMALIZE_VALUES, key="env", value_map={"dev": "development"})]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"env": "qa"}

    def test_conditional_set_on_name(self):
        resource = _make_resource()
        pipeline = [_op(
            "cond", OperationType.CONDITIONAL_SET,
            key="tier", value="critical",
            operator=MatchOperator.STARTS_WITH, match_value="prod-",
        )]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"tier": "critical"}

    def test_conditional_set_not_matching(self):
        resource = _make_resource(name="dev-batch-01")
        pipeline = [_op(
            "cond", OperationType.CONDITIONAL_SET,
            key="tier", value="critical", match_value="prod",
        )]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {}

    def test_disabled_operation_skipped(self):
        resource = _make_resource(labels={"env": "prod"})
        pipeline = [_op("rm", OperationType.REMOVE, enabled=False, key="env")]

        assert self.evaluator.apply_or_raise(resource, pipeline) == {"env": "prod"}


class TestTokens:
    def test_resolves_all_tokens(self):
        resource = _make_resource()
        result = resolve_tokens("{{name}}|{{zone}}|{{region}}|{{type}}|{{machineType}}|{{created}}", resource)
        assert result == "prod-payment-service-01|us-central1-a|us-central1|instance|e2-medium|2024-03-01"

    def test_unknown_token_left_alone(self):
        assert resolve_tokens("{{owner}}", _make_resource()) == "{{owner}}"

    def test_region_token_in_add(self):
        evaluator = PipelineEvaluator()
        pipeline = [_op("add", OperationType.ADD, key="region", value="{{region}}")]
        assert evaluator.apply_or_raise(_make_resource(zone="europe-west1-b"), pipeline) == {
            "region": "europe-west1",
        }


class TestPipelineProperties:
    def setup_method(self):
        self.evaluator = PipelineEvaluator(max_workers=2)

    def test_order_sensitivity(self):
        resource = _make_resource()
        replace = _op("rep", OperationType.REPLACE, key="env", value="Prod")
        lower = _op("case", OperationType.CASE_TRANSFORM, target_key="env", casing=Casing.LOWERCASE)

        assert self.evaluator.apply_or_raise(resource, [replace, lower]) == {"env": "prod"}
        assert self.evaluator.apply_or_raise(resource, [lower, replace]) == {"env": "Prod"}

    def test_idempotent_pipeline(self):
        resource = _make_resource(labels={"legacy": "x", "env": "staging"})
        pipeline = [
            _op("add", OperationType.ADD, key="owner", value="platform"),
            _op("rep", OperationType.REPLACE, key="env", value="prod"),
            _op("rm", OperationType.REMOVE, key="legacy"),
        ]

        once = self.evaluator.apply_or_raise(resource, pipeline)
        twice = self.evaluator.apply_or_raise(resource.model_copy(update={"labels": once}), pipeline)

        assert once == twice == {"env": "prod", "owner": "platform"}

    def test_deterministic_and_pure(self):
        resource = _make_resource(labels={"env": "Prod"})
        pipeline = [_op("case", OperationType.CASE_TRANSFORM, casing=Casing.LOWERCASE)]

        results = [self.evaluator.apply_or_raise(resource, pipeline) for _ in range(5)]

        assert all(r == results[0] for r in results)
        assert resource.labels == {"env": "Prod"}

    def test_saved_pipeline_accepted(self):
        saved = SavedPipeline(
            id="pipe_1",
            name="Standardize",
            operations=[_op("rep", OperationType.REPLACE, key="env", value="prod")],
            created_at=datetime.now(timezone.utc),
        )
        assert self.evaluator.apply_or_raise(_make_resource(), saved) == {"env": "prod"}


class TestConfigurationFaults:
    def setup_method(self):
        self.evaluator = PipelineEvaluator(max_workers=2)

    def test_invalid_regex_rejected_at_validate(self):
        pipeline = [_op(
            "bad", OperationType.EXTRACT_REGEX,
            regex="([a-z", groups=[GroupMapping(index=1, target_key="x")],
        )]
        with pytest.raises(ConfigurationError) as exc:
            self.evaluator.validate(pipeline)
        assert exc.value.operation_id == "bad"

    def test_group_index_out_of_range(self):
        op = _op("bad", OperationType.EXTRACT_REGEX, regex=r"^(\w+)-",
                 groups=[GroupMapping(index=3, target_key="x")])
        with pytest.raises(ConfigurationError):
            validate_operation(op)

    def test_missing_key_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_operation(_op("bad", OperationType.REPLACE, value="prod"))

    def test_apply_returns_current_labels_on_fault(self):
        resource = _make_resource(labels={"env": "prod"})
        pipeline = [
            _op("rep", OperationType.REPLACE, key="env", value="dev"),
            _op("bad", OperationType.EXTRACT_REGEX, regex="(", groups=[GroupMapping(index=1, target_key="x")]),
        ]

        labels, error = self.evaluator.apply(resource, pipeline)

        assert labels == {"env": "prod"}
        assert isinstance(error, ConfigurationError)

    def test_batch_reports_failures_without_raising(self):
        resources = [_make_resource("r1"), _make_resource("r2", labels={"owner": "x"})]
        pipeline = [_op(
            "cond", OperationType.CONDITIONAL_SET,
            source_field="region", key="tier", value="gold", match_value="x",
        )]

        result = self.evaluator.apply_batch(resources, pipeline)

        assert result.succeeded == []
        assert [f.id for f in result.failed] == ["r1", "r2"]
        assert "unknown source field" in result.failed[0].reason

    def test_batch_reports_changes(self):
        resources = [
            _make_resource("r1", labels={"env": "dev"}),
            _make_resource("r2", labels={"env": "prod"}),
        ]
        pipeline = [_op("norm", OperationType.NORMALIZE_VALUES, key="env", value_map={"dev": "development"})]

        result = self.evaluator.apply_batch(resources, pipeline)

        assert result.succeeded == ["r1", "r2"]
        assert result.proposed["r1"] == {"env": "development"}
        assert [c.kind for c in result.changes["r1"]] == ["MODIFY"]
        assert result.changes["r2"] == []
