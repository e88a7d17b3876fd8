"""
Policy Evaluator — runs governance policies against resources and reports violations.

Behavioral Contract:
- Only enabled policies are evaluated
- Each policy yields at most one violation per resource per evaluation
- Built-in rule kinds are dispatched by rule type; CUSTOM rules resolve a
  predicate from the PolicyRegistry keyed by policy id
- A custom predicate that raises, or a malformed rule, is logged and
  reported as an evaluation fault for that policy only; no violation
- Pure: never mutates the resource
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from labelgov.errors import ConfigurationError
from labelgov.models.policy import (
    GovernancePolicy,
    PolicyViolation,
    RuleParams,
    RuleType,
)
from labelgov.models.resource import GceResource, ResourceType
from labelgov.models.results import EvaluationFault, PolicyBatchResult

logger = logging.getLogger(__name__)

# Returns a violation message, or None when the resource complies
Predicate = Callable[[GceResource], Optional[str]]
RuleCheck = Callable[[GceResource, RuleParams, GovernancePolicy], Optional[str]]

_NAMING_CHARS = re.compile(r"^[a-z0-9-]+$")
_COST_CENTER = re.compile(r"^cc-\d{3,5}$")


class PolicyRegistry:
    """Custom predicates keyed by policy id. Keeps executable code out of policy data."""

    def __init__(self):
        self._predicates: Dict[str, Predicate] = {}

    def register(self, policy_id: str, predicate: Predicate) -> None:
        self._predicates[policy_id] = predicate

    def unregister(self, policy_id: str) -> None:
        self._predicates.pop(policy_id, None)

    def resolve(self, policy_id: str) -> Optional[Predicate]:
        return self._predicates.get(policy_id)

    def __contains__(self, policy_id: str) -> bool:
        return policy_id in self._predicates


def sort_violations(violations: Sequence[PolicyViolation]) -> List[PolicyViolation]:
    """Severity descending, then policy id."""
    return sorted(violations, key=lambda v: (-v.severity.rank, v.policy_id))


def _compile(pattern: str, policy: GovernancePolicy) -> "re.Pattern[str]":
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(
            f"Policy {policy.id}: invalid regex {pattern!r}: {e}",
            policy_id=policy.id,
        ) from e


def _require_key(params: RuleParams, policy: GovernancePolicy) -> str:
    if not params.key:
        raise ConfigurationError(
            f"Policy {policy.id} ({policy.rule_config.type.value}) requires params.key",
            policy_id=policy.id,
        )
    return params.key


# --- Declarative rule checks ---

def _check_required_label(r: GceResource, params: RuleParams, policy: GovernancePolicy) -> Optional[str]:
    key = _require_key(params, policy)
    if key not in r.labels:
        return f'Missing mandatory label: "{key}"'
    return None


def _check_allowed_values(r: GceResource, params: RuleParams, policy: GovernancePolicy) -> Optional[str]:
    key = _require_key(params, policy)
    value = r.labels.get(key)
    allowed = params.values or []
    if value is None or not allowed:
        return None
    if value not in allowed:
        return (
            f'Value "{value}" for label "{key}" is not allowed. '
            f"Options: {', '.join(allowed)}"
        )
    return None


def _check_name_regex(r: GceResource, params: RuleParams, policy: GovernancePolicy) -> Optional[str]:
    if not params.regex:
        raise ConfigurationError(
            f"Policy {policy.id} (NAME_REGEX) requires params.regex",
            policy_id=policy.id,
        )
    if not _compile(params.regex, policy).search(r.name):
        return f"Resource name does not match required pattern: {params.regex}"
    return None


def _check_region_restriction(r: GceResource, params: RuleParams, policy: GovernancePolicy) -> Optional[str]:
    for location in params.values or []:
        # A disallowed region also covers every zone inside it
        if r.zone == location or r.zone.startswith(location + "-"):
            return f"Resource located in disallowed region: {r.zone}"
    return None


def _check_taxonomy_required(r: GceResource, params: RuleParams, policy: GovernancePolicy) -> Optional[str]:
    missing = [t.key for t in params.taxonomy or [] if t.is_required and not r.labels.get(t.key)]
    if missing:
        return f"Missing required labels: {', '.join(missing)}"
    return None


def _check_taxonomy_values(r: GceResource, params: RuleParams, policy: GovernancePolicy) -> Optional[str]:
    invalid = []
    for rule in params.taxonomy or []:
        value = r.labels.get(rule.key)
        if value and rule.allowed_values and value not in rule.allowed_values:
            invalid.append(f"{rule.key} (found: {value})")
    if invalid:
        return f"Invalid label values for: {', '.join(invalid)}"
    return None


def _check_naming_convention(r: GceResource, params: RuleParams, policy: GovernancePolicy) -> Optional[str]:
    if not _NAMING_CHARS.match(r.name):
        return "Name contains uppercase or special characters."
    if "-" not in r.name:
        return "Name does not follow hyphenated convention."
    return None


def _check_cost_center_format(r: GceResource, params: RuleParams, policy: GovernancePolicy) -> Optional[str]:
    key = params.key or "cost-center"
    value = r.labels.get(key)
    if value and not _COST_CENTER.match(value):
        return "Cost Center format invalid. Must match 'cc-XXXX'."
    return None


def _check_idle_resource(r: GceResource, params: RuleParams, policy: GovernancePolicy) -> Optional[str]:
    if r.type == ResourceType.INSTANCE and r.status == "STOPPED":
        return "Resource is STOPPED but incurring storage costs."
    return None


_RULE_CHECKS: Dict[RuleType, RuleCheck] = {
    RuleType.REQUIRED_LABEL: _check_required_label,
    RuleType.ALLOWED_VALUES: _check_allowed_values,
    RuleType.NAME_REGEX: _check_name_regex,
    RuleType.REGION_RESTRICTION: _check_region_restriction,
    RuleType.TAXONOMY_REQUIRED: _check_taxonomy_required,
    RuleType.TAXONOMY_VALUES: _check_taxonomy_values,
    RuleType.NAMING_CONVENTION: _check_naming_convention,
    RuleType.COST_CENTER_FORMAT: _check_cost_center_format,
    RuleType.IDLE_RESOURCE: _check_idle_resource,
}


class PolicyEvaluator:
    """Evaluates policies. Holds only the custom predicate registry."""

    def __init__(self, registry: Optional[PolicyRegistry] = None, max_workers: int = 8):
        self.registry = registry or PolicyRegistry()
        self.max_workers = max_workers

    def validate(self, policy: GovernancePolicy) -> None:
        """
        Load-time check. Raises ConfigurationError for a rule that can never
        be evaluated: missing key/regex, invalid regex, unregistered custom rule.
        """
        rule = policy.rule_config
        params = rule.params
        if rule.type == RuleType.CUSTOM:
            if policy.id not in self.registry:
                raise ConfigurationError(
                    f"Policy {policy.id}: no custom predicate registered",
                    policy_id=policy.id,
                )
        elif rule.type in (RuleType.REQUIRED_LABEL, RuleType.ALLOWED_VALUES):
            _require_key(params, policy)
        elif rule.type == RuleType.NAME_REGEX:
            if not params.regex:
                raise ConfigurationError(
                    f"Policy {policy.id} (NAME_REGEX) requires params.regex",
                    policy_id=policy.id,
                )
            _compile(params.regex, policy)

    def _evaluate_one(
        self, resource: GceResource, policies: Sequence[GovernancePolicy]
    ) -> Tuple[List[PolicyViolation], List[EvaluationFault]]:
        violations: Dict[str, PolicyViolation] = {}
        faults = []

        for policy in policies:
            if not policy.is_enabled:
                continue

            try:
                message = self._check(resource, policy)
            except ConfigurationError as e:
                # Only this policy is skipped; the others still report
                logger.warning("Policy %s skipped for resource %s: %s", policy.id, resource.id, e)
                faults.append(EvaluationFault(
                    policy_id=policy.id,
                    resource_id=resource.id,
                    reason=str(e),
                ))
                continue
            except Exception as e:
                logger.warning(
                    "Policy %s raised on resource %s; treating as compliant",
                    policy.id, resource.id, exc_info=True,
                )
                faults.append(EvaluationFault(
                    policy_id=policy.id,
                    resource_id=resource.id,
                    reason=f"{type(e).__name__}: {e}",
                ))
                continue

            if message:
                violations[policy.id] = PolicyViolation(
                    policy_id=policy.id,
                    message=message,
                    severity=policy.severity,
                )

        return sort_violations(list(violations.values())), faults

    def _check(self, resource: GceResource, policy: GovernancePolicy) -> Optional[str]:
        """Violation message for one policy, or None. Custom predicates may raise anything."""
        rule_type = policy.rule_config.type
        if rule_type != RuleType.CUSTOM:
            return _RULE_CHECKS[rule_type](resource, policy.rule_config.params, policy)

        predicate = self.registry.resolve(policy.id)
        if predicate is None:
            raise ConfigurationError(
                f"Policy {policy.id}: no custom predicate registered",
                policy_id=policy.id,
            )
        message = predicate(resource)
        if not message:
            return None
        if not isinstance(message, str):
            # Predicates returning a bare flag get the policy's own wording
            return policy.description or f"Violates policy: {policy.name}"
        return message

    def evaluate(
        self, resource: GceResource, policies: Sequence[GovernancePolicy]
    ) -> List[PolicyViolation]:
        """Violations for one resource, sorted by severity then policy id."""
        violations, _ = self._evaluate_one(resource, policies)
        return violations

    def evaluate_batch(
        self, resources: Sequence[GceResource], policies: Sequence[GovernancePolicy]
    ) -> PolicyBatchResult:
        """
        Parallel evaluation keyed by resource id. A broken policy is reported
        in `faults` for each resource and never masks the other policies.
        """
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            outcomes = list(pool.map(lambda r: self._evaluate_one(r, policies), resources))

        result = PolicyBatchResult()
        for resource, (violations, faults) in zip(resources, outcomes):
            result.succeeded.append(resource.id)
            result.violations[resource.id] = violations
            result.faults.extend(faults)
        return result
