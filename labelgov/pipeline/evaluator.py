"""
Operation Pipeline Evaluator — executes an ordered operation list against one resource.

Behavioral Contract:
- Operations run strictly in declared order; each sees the previous output
- Disabled operations are skipped entirely
- Output depends only on (resource, pipeline): no randomness, no clock reads
- A fault in one operation aborts evaluation for that resource only
- Never mutates the resource; returns a new proposed label mapping
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from labelgov.errors import ConfigurationError
from labelgov.labels import label_changes
from labelgov.models.pipeline import (
    Casing,
    LabelOperation,
    MatchOperator,
    OperationType,
    SavedPipeline,
)
from labelgov.models.resource import GceResource
from labelgov.models.results import FailedResource, PipelineBatchResult

logger = logging.getLogger(__name__)

Pipeline = Union[SavedPipeline, Sequence[LabelOperation]]
Labels = Dict[str, str]

_TOKEN = re.compile(r"\{\{(\w+)\}\}")
_RESOURCE_FIELDS = ("name", "type", "zone")
_DEFAULT_DELIMITER = ":"


def _operations(pipeline: Pipeline) -> List[LabelOperation]:
    if isinstance(pipeline, SavedPipeline):
        return list(pipeline.operations)
    return list(pipeline)


def _region_of(zone: str) -> str:
    """us-central1-a → us-central1. Regional and global locations pass through."""
    parts = zone.split("-")
    if zone != "global" and len(parts) > 2:
        return "-".join(parts[:-1])
    return zone


def resolve_tokens(template: str, resource: GceResource) -> str:
    """Substitute {{name}}, {{zone}}, {{region}}, {{type}}, {{machineType}}, {{created}}."""
    replacements = {
        "name": resource.name,
        "zone": resource.zone,
        "region": _region_of(resource.zone),
        "type": resource.type.value,
        "machineType": resource.machine_type or "unknown",
        "created": resource.created_at.date().isoformat() if resource.created_at else "unknown",
    }
    return _TOKEN.sub(lambda m: replacements.get(m.group(1), m.group(0)), template)


def _compile(pattern: str, op: LabelOperation) -> "re.Pattern[str]":
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(
            f"Operation {op.id}: invalid regex {pattern!r}: {e}",
            operation_id=op.id,
        ) from e


def _require(op: LabelOperation, *fields: str) -> None:
    missing = [f for f in fields if getattr(op.config, f) in (None, "")]
    if missing:
        raise ConfigurationError(
            f"Operation {op.id} ({op.type.value}) is missing required config: "
            f"{', '.join(missing)}",
            operation_id=op.id,
        )


def _source_value(
    op: LabelOperation, resource: GceResource, labels: Labels
) -> str:
    """Resolve config.source_field to the string the operation inspects."""
    field = op.config.source_field or "name"
    if field in _RESOURCE_FIELDS:
        value = getattr(resource, field)
        return value.value if field == "type" else value

    delimiter = op.config.delimiter or _DEFAULT_DELIMITER
    prefix, sep, label_key = field.partition(delimiter)
    if sep and prefix == "label" and label_key:
        return labels.get(label_key, "")

    raise ConfigurationError(
        f"Operation {op.id}: unknown source field {field!r}",
        operation_id=op.id,
    )


def validate_operation(op: LabelOperation) -> None:
    """Raise ConfigurationError if the operation cannot be evaluated at all."""
    cfg = op.config
    if op.type in (OperationType.ADD, OperationType.REPLACE):
        _require(op, "key")
        if cfg.value is None:
            _require(op, "value")
    elif op.type == OperationType.REMOVE:
        _require(op, "key")
    elif op.type == OperationType.PATTERN:
        _require(op, "key", "find")
        if cfg.replace is None:
            _require(op, "replace")
    elif op.type == OperationType.EXTRACT_REGEX:
        _require(op, "regex")
        if not cfg.groups:
            raise ConfigurationError(
                f"Operation {op.id}: EXTRACT_REGEX needs at least one group mapping",
                operation_id=op.id,
            )
        compiled = _compile(cfg.regex, op)
        for group in cfg.groups:
            if group.index < 0 or group.index > compiled.groups:
                raise ConfigurationError(
                    f"Operation {op.id}: group {group.index} does not exist in "
                    f"{cfg.regex!r} ({compiled.groups} groups)",
                    operation_id=op.id,
                )
    elif op.type == OperationType.CASE_TRANSFORM:
        _require(op, "casing")
    elif op.type == OperationType.NORMALIZE_VALUES:
        if not (cfg.key or cfg.target_key):
            _require(op, "key")
    elif op.type == OperationType.CONDITIONAL_SET:
        _require(op, "key")
        if cfg.value is None:
            _require(op, "value")
        if cfg.operator == MatchOperator.MATCHES_REGEX:
            _compile(cfg.match_value or "", op)


# --- Operation handlers ---
# Each takes the current labels and returns the next labels. Never mutates input.

def _apply_add(op: LabelOperation, resource: GceResource, labels: Labels) -> Labels:
    if op.config.key in labels:
        return labels
    return {**labels, op.config.key: resolve_tokens(op.config.value, resource)}


def _apply_replace(op: LabelOperation, resource: GceResource, labels: Labels) -> Labels:
    return {**labels, op.config.key: resolve_tokens(op.config.value, resource)}


def _apply_remove(op: LabelOperation, resource: GceResource, labels: Labels) -> Labels:
    if op.config.key not in labels:
        return labels
    return {k: v for k, v in labels.items() if k != op.config.key}


def _apply_pattern(op: LabelOperation, resource: GceResource, labels: Labels) -> Labels:
    current = labels.get(op.config.key)
    if current is None or op.config.find not in current:
        return labels
    return {**labels, op.config.key: current.replace(op.config.find, op.config.replace)}


def _apply_extract_regex(op: LabelOperation, resource: GceResource, labels: Labels) -> Labels:
    source = _source_value(op, resource, labels)
    match = _compile(op.config.regex, op).search(source)
    if not match:
        return labels  # Non-matching resources are left untouched

    result = dict(labels)
    for group in op.config.groups:
        captured = match.group(group.index)
        if captured is not None:
            result[group.target_key] = captured
    return result


def _apply_case_transform(op: LabelOperation, resource: GceResource, labels: Labels) -> Labels:
    transform = str.lower if op.config.casing == Casing.LOWERCASE else str.upper
    target = op.config.target_key or op.config.key
    if target is None:
        return {k: transform(v) for k, v in labels.items()}
    if target not in labels:
        return labels
    return {**labels, target: transform(labels[target])}


def _apply_normalize_values(op: LabelOperation, resource: GceResource, labels: Labels) -> Labels:
    key = op.config.key or op.config.target_key
    current = labels.get(key)
    if current is None or current not in op.config.value_map:
        return labels
    return {**labels, key: op.config.value_map[current]}


def _matches(operator: MatchOperator, candidate: str, target: str) -> bool:
    if operator == MatchOperator.EQUALS:
        return candidate == target
    if operator == MatchOperator.STARTS_WITH:
        return candidate.startswith(target)
    if operator == MatchOperator.ENDS_WITH:
        return candidate.endswith(target)
    if operator == MatchOperator.MATCHES_REGEX:
        return re.search(target, candidate) is not None
    return target in candidate


def _apply_conditional_set(op: LabelOperation, resource: GceResource, labels: Labels) -> Labels:
    candidate = _source_value(op, resource, labels)
    operator = op.config.operator or MatchOperator.CONTAINS
    if not _matches(operator, candidate, op.config.match_value or ""):
        return labels
    return {**labels, op.config.key: resolve_tokens(op.config.value, resource)}


_HANDLERS: Dict[OperationType, Callable[[LabelOperation, GceResource, Labels], Labels]] = {
    OperationType.ADD: _apply_add,
    OperationType.REPLACE: _apply_replace,
    OperationType.REMOVE: _apply_remove,
    OperationType.PATTERN: _apply_pattern,
    OperationType.EXTRACT_REGEX: _apply_extract_regex,
    OperationType.CASE_TRANSFORM: _apply_case_transform,
    OperationType.NORMALIZE_VALUES: _apply_normalize_values,
    OperationType.CONDITIONAL_SET: _apply_conditional_set,
}


class PipelineEvaluator:
    """
    Runs label pipelines. Stateless apart from the batch worker count,
    so one instance may be shared by any number of callers.
    """

    def __init__(self, max_workers: int = 8):
        self.max_workers = max_workers

    def validate(self, pipeline: Pipeline) -> None:
        """
        Load-time check of every operation, enabled or not.
        Raises ConfigurationError on the first unusable operation.
        """
        for op in _operations(pipeline):
            validate_operation(op)

    def apply_or_raise(self, resource: GceResource, pipeline: Pipeline) -> Labels:
        """Evaluate the pipeline; ConfigurationError propagates."""
        labels = dict(resource.labels)
        for op in _operations(pipeline):
            if not op.enabled:
                continue
            validate_operation(op)
            labels = _HANDLERS[op.type](op, resource, labels)
        return dict(sorted(labels.items()))

    def apply(
        self, resource: GceResource, pipeline: Pipeline
    ) -> Tuple[Labels, Optional[ConfigurationError]]:
        """
        Evaluate the pipeline for one resource.

        Returns (proposed_labels, None) on success. On a configuration fault
        returns (the resource's current labels, error).
        """
        try:
            return self.apply_or_raise(resource, pipeline), None
        except ConfigurationError as e:
            logger.info("Pipeline aborted for resource %s: %s", resource.id, e)
            return dict(resource.labels), e

    def apply_batch(
        self, resources: Sequence[GceResource], pipeline: Pipeline
    ) -> PipelineBatchResult:
        """
        Evaluate the pipeline across resources in parallel.
        Failed resources are reported by id and never abort the batch.
        """
        operations = _operations(pipeline)
        result = PipelineBatchResult()

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            outcomes = list(pool.map(lambda r: self.apply(r, operations), resources))

        for resource, (proposed, error) in zip(resources, outcomes):
            if error is not None:
                result.failed.append(FailedResource(id=resource.id, reason=str(error)))
                continue
            result.succeeded.append(resource.id)
            result.proposed[resource.id] = proposed
            result.changes[resource.id] = label_changes(resource.labels, proposed)

        if result.failed:
            logger.warning(
                "Pipeline batch: %d succeeded, %d failed",
                len(result.succeeded), len(result.failed),
            )
        return result
