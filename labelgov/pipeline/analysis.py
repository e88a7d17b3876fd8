"""
Label analysis — finds inconsistent label values across an inventory and
suggests the pipeline operation that would fix each one.
"""

from typing import Dict, List, Sequence, Set

from pydantic import BaseModel

from labelgov.models.pipeline import (
    Casing,
    LabelOperation,
    OperationConfig,
    OperationType,
)
from labelgov.models.resource import GceResource

# Longest member of each group is the canonical value
SYNONYM_GROUPS: List[List[str]] = [
    ["prod", "production"],
    ["dev", "development"],
    ["stg", "stage", "staging"],
    ["qa", "test", "testing"],
]


class LabelFinding(BaseModel):
    kind: str                               # "CASING" | "FRAGMENTATION"
    key: str
    title: str
    description: str
    values: List[str]
    severity: str                           # "HIGH" | "MEDIUM"
    suggested_operation: LabelOperation


def _values_by_key(resources: Sequence[GceResource]) -> Dict[str, Set[str]]:
    values: Dict[str, Set[str]] = {}
    for resource in resources:
        for key, value in resource.labels.items():
            values.setdefault(key, set()).add(value)
    return values


def analyze_labels(resources: Sequence[GceResource]) -> List[LabelFinding]:
    """Report casing variants and synonym fragmentation per label key."""
    findings = []

    for key, value_set in sorted(_values_by_key(resources).items()):
        by_lower: Dict[str, Set[str]] = {}
        for value in value_set:
            by_lower.setdefault(value.lower(), set()).add(value)

        for lower, variants in sorted(by_lower.items()):
            if len(variants) < 2:
                continue
            findings.append(LabelFinding(
                kind="CASING",
                key=key,
                title=f'Inconsistent Casing: "{key}"',
                description=f'Value "{lower}" appears in multiple casing variations.',
                values=sorted(variants),
                severity="MEDIUM",
                suggested_operation=LabelOperation(
                    id=f"fix-case-{key}",
                    type=OperationType.CASE_TRANSFORM,
                    config=OperationConfig(target_key=key, casing=Casing.LOWERCASE),
                ),
            ))

        for group in SYNONYM_GROUPS:
            found = [syn for syn in group if syn in value_set]
            if len(found) < 2:
                continue
            canonical = max(group, key=len)
            value_map = {f: canonical for f in found if f != canonical}
            findings.append(LabelFinding(
                kind="FRAGMENTATION",
                key=key,
                title=f'Ambiguous Values: "{key}"',
                description=f"Found synonyms: {', '.join(found)}",
                values=found,
                severity="HIGH",
                suggested_operation=LabelOperation(
                    id=f"normalize-{key}-{canonical}",
                    type=OperationType.NORMALIZE_VALUES,
                    config=OperationConfig(key=key, value_map=value_map),
                ),
            ))

    return findings
