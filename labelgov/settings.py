"""Engine settings.

Environment variable prefix: LABELGOV_ (e.g. LABELGOV_BATCH_MAX_WORKERS=16).
"""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Runtime configuration for the label governance engine."""

    model_config = SettingsConfigDict(env_prefix="LABELGOV_")

    # -------------------------------------------------------------------------
    # Batch evaluation
    # -------------------------------------------------------------------------

    batch_max_workers: int = Field(
        default=8,
        ge=1,
        description="Thread pool size for parallel pipeline and policy batches.",
    )

    # -------------------------------------------------------------------------
    # Timeline
    # -------------------------------------------------------------------------

    timeline_retention: int = Field(
        default=90,
        ge=1,
        description="Number of timeline entries kept when merging a new snapshot.",
    )
    snapshot_schedule: str = Field(
        default="0 0 * * *",
        description="Cron expression delimiting snapshot windows. A new snapshot "
        "replaces an existing entry that falls in the same window.",
    )

    # -------------------------------------------------------------------------
    # Commit path
    # -------------------------------------------------------------------------

    commit_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per label write on transient inventory failures. "
        "Conflicts are never retried.",
    )
    commit_initial_delay: float = Field(default=0.1, ge=0.0)
    commit_max_delay: float = Field(default=2.0, ge=0.0)
    validate_labels_on_commit: bool = Field(
        default=True,
        description="Reject commits whose labels break key/value naming rules.",
    )

    log_level: str = "INFO"


def configure_logging(settings: EngineSettings) -> None:
    """Attach a basic stream handler at the configured level."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
