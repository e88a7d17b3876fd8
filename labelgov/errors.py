"""Engine exceptions."""

from typing import Optional


class LabelGovernanceError(Exception):
    """Base class for every error raised by the engine."""
    pass


class ConfigurationError(LabelGovernanceError):
    """
    A pipeline operation or policy rule is structurally unusable
    (invalid regex, missing required field). Isolated to the single
    resource being evaluated when raised during a batch.
    """

    def __init__(
        self,
        message: str,
        operation_id: Optional[str] = None,
        policy_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.operation_id = operation_id
        self.policy_id = policy_id


class ConflictError(LabelGovernanceError):
    """The supplied label fingerprint is stale. Re-read and retry; never retried blindly."""

    def __init__(self, resource_id: str, supplied: str, current: str):
        super().__init__(
            f"Conflict on resource {resource_id}: fingerprint {supplied!r} "
            f"is stale (current {current!r}). Re-read the resource and retry."
        )
        self.resource_id = resource_id
        self.supplied = supplied
        self.current = current


class TransientInventoryError(LabelGovernanceError):
    """A transport-level failure talking to the inventory. Safe to retry."""
    pass


class ResourceNotFoundError(LabelGovernanceError):
    """Raised when a resource id is unknown to the inventory."""
    pass


class InvalidRevertError(LabelGovernanceError):
    """A REVERT entry does not restore any earlier entry's previous labels."""
    pass
