"""Governance Policy — declarative and custom rules evaluated per resource."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    MEDIUM = "MEDIUM"
    WARNING = "WARNING"
    INFO = "INFO"

    @property
    def rank(self) -> int:
        """Higher is more severe. CRITICAL > MEDIUM > WARNING > INFO."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 3,
    Severity.MEDIUM: 2,
    Severity.WARNING: 1,
    Severity.INFO: 0,
}


class RuleType(str, Enum):
    REQUIRED_LABEL = "REQUIRED_LABEL"
    ALLOWED_VALUES = "ALLOWED_VALUES"
    NAME_REGEX = "NAME_REGEX"
    REGION_RESTRICTION = "REGION_RESTRICTION"
    CUSTOM = "CUSTOM"
    # Built-in kinds backing the standard policy set
    TAXONOMY_REQUIRED = "TAXONOMY_REQUIRED"
    TAXONOMY_VALUES = "TAXONOMY_VALUES"
    NAMING_CONVENTION = "NAMING_CONVENTION"
    COST_CENTER_FORMAT = "COST_CENTER_FORMAT"
    IDLE_RESOURCE = "IDLE_RESOURCE"


class TaxonomyRule(BaseModel):
    """One entry of the label taxonomy. Empty allowed_values means any value."""

    key: str
    allowed_values: List[str] = []
    is_required: bool = False


class RuleParams(BaseModel):
    key: Optional[str] = None               # Label key
    values: Optional[List[str]] = None      # Allowed values / disallowed regions
    regex: Optional[str] = None             # Name pattern
    taxonomy: Optional[List[TaxonomyRule]] = None


class RuleConfig(BaseModel):
    type: RuleType
    params: RuleParams = RuleParams()


class GovernancePolicy(BaseModel):
    """
    A governance rule. Declarative kinds are dispatched by rule type;
    CUSTOM policies resolve their predicate through a registry keyed by id.
    """

    id: str
    name: str
    description: str = ""
    category: str = "OPERATIONS"
    severity: Severity = Severity.WARNING
    is_enabled: bool = True
    is_custom: bool = False
    rule_config: RuleConfig


class PolicyViolation(BaseModel):
    """Ephemeral evaluation output. Recomputed on every call."""

    model_config = ConfigDict(frozen=True)

    policy_id: str
    message: str
    severity: Severity
