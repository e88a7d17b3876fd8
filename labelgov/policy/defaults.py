"""Standard policy set and taxonomy, and restoration of saved policy settings."""

from typing import List, Optional, Sequence

from labelgov.models.policy import (
    GovernancePolicy,
    RuleConfig,
    RuleParams,
    RuleType,
    Severity,
    TaxonomyRule,
)

# Empty allowed_values = any value, presence only
DEFAULT_TAXONOMY: List[TaxonomyRule] = [
    TaxonomyRule(key="environment", allowed_values=["production", "staging", "development", "dr"], is_required=True),
    TaxonomyRule(key="cost-center", allowed_values=[], is_required=True),
    TaxonomyRule(key="owner", allowed_values=[], is_required=True),
    TaxonomyRule(key="data-classification", allowed_values=["public", "internal", "confidential", "restricted"], is_required=False),
]


def default_policies(taxonomy: Optional[Sequence[TaxonomyRule]] = None) -> List[GovernancePolicy]:
    """The built-in policy set, bound to the given taxonomy."""
    rules = list(taxonomy if taxonomy is not None else DEFAULT_TAXONOMY)
    return [
        GovernancePolicy(
            id="req-labels",
            name="Mandatory Labeling",
            description="Ensure all resources have the critical labels defined in the Taxonomy.",
            category="OPERATIONS",
            severity=Severity.CRITICAL,
            rule_config=RuleConfig(type=RuleType.TAXONOMY_REQUIRED, params=RuleParams(taxonomy=rules)),
        ),
        GovernancePolicy(
            id="taxonomy-values",
            name="Controlled Vocabulary",
            description="Labels must match the allowed values list.",
            category="OPERATIONS",
            severity=Severity.WARNING,
            rule_config=RuleConfig(type=RuleType.TAXONOMY_VALUES, params=RuleParams(taxonomy=rules)),
        ),
        GovernancePolicy(
            id="naming-std",
            name="Naming Convention",
            description="Resources must be lowercase, hyphenated, and follow standard patterns.",
            category="OPERATIONS",
            severity=Severity.INFO,
            rule_config=RuleConfig(type=RuleType.NAMING_CONVENTION),
        ),
        GovernancePolicy(
            id="cost-center-fmt",
            name="Cost Center Format",
            description='Cost centers must follow the "cc-XXXX" accounting format.',
            category="COST",
            severity=Severity.WARNING,
            rule_config=RuleConfig(type=RuleType.COST_CENTER_FORMAT, params=RuleParams(key="cost-center")),
        ),
        GovernancePolicy(
            id="idle-waste",
            name="Idle Resource Waste",
            description="Detects resources that are stopped but still incurring storage costs.",
            category="COST",
            severity=Severity.MEDIUM,
            rule_config=RuleConfig(type=RuleType.IDLE_RESOURCE),
        ),
    ]


def restore_policies(
    saved: Sequence[GovernancePolicy],
    taxonomy: Optional[Sequence[TaxonomyRule]] = None,
) -> List[GovernancePolicy]:
    """
    Rebuild the active policy list from saved settings.

    Standard policies keep their code-defined rule (rebound to the taxonomy)
    but take the saved name, category, severity and enabled flag. Custom
    policies are kept as saved. Standard policies absent from the saved set
    are appended.
    """
    standard = {p.id: p for p in default_policies(taxonomy)}
    restored = []

    for policy in saved:
        base = standard.get(policy.id)
        if policy.is_custom or base is None:
            restored.append(policy)
            continue
        restored.append(base.model_copy(update={
            "name": policy.name,
            "category": policy.category,
            "severity": policy.severity,
            "is_enabled": policy.is_enabled,
        }))

    seen = {p.id for p in restored}
    restored.extend(p for p in standard.values() if p.id not in seen)
    return restored
