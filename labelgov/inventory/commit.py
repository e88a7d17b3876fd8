"""Commit helper — bounded retries with exponential backoff on transient failures only."""

import logging
import time
from typing import Callable, Mapping, Optional

from pydantic import BaseModel, Field

from labelgov.errors import TransientInventoryError
from labelgov.inventory.store import InventorySource
from labelgov.models.resource import GceResource

logger = logging.getLogger(__name__)


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = 0.1
    max_delay: float = 2.0
    exponential_base: float = 2.0


def commit_labels(
    inventory: InventorySource,
    resource: GceResource,
    labels: Mapping[str, str],
    retry: Optional[RetryConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> GceResource:
    """
    Write labels using the fingerprint the caller read.

    TransientInventoryError is retried up to `max_attempts`. ConflictError and
    every other error propagate immediately: a conflict needs a re-read, not a
    blind retry.
    """
    if retry is None:
        retry = RetryConfig()

    delay = retry.initial_delay
    for attempt in range(1, retry.max_attempts + 1):
        try:
            return inventory.write_labels(resource.id, labels, resource.label_fingerprint)
        except TransientInventoryError:
            if attempt == retry.max_attempts:
                raise
            logger.warning(
                "Transient failure writing labels for %s (attempt %d/%d); retrying in %.2fs",
                resource.id, attempt, retry.max_attempts, min(delay, retry.max_delay),
            )
            sleep(min(delay, retry.max_delay))
            delay *= retry.exponential_base
