"""Azure DevOps configuration schema and loading."""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigError

DEFAULT_CONFIG_FILE = "adosync_config.yaml"

DEFAULT_DATE_SYNC_TYPES = ["Product Backlog Item", "Feature"]

JOB_NAMES = ("set_parent_dates", "add_tags", "set_parents", "create_work_items")


class DevOpsConnection(BaseModel):
    """Azure DevOps connection settings."""

    base_url: str = Field(default="https://dev.azure.com/", description="Service base URL")
    organization: str = Field(..., description="Azure DevOps organization name")
    project: str = Field(..., description="Team project name")
    api_version: str = Field(default="7.1", description="REST API version")
    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    max_retries: int = Field(
        default=0, ge=0, description="Retries for transient GET failures (0 disables retrying)"
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base_url ends with exactly one slash."""
        return v.rstrip("/") + "/"

    @field_validator("organization", "project")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject empty organization and project names."""
        if not v.strip():
            raise ValueError("must not be empty")
        return v


class DateSyncConfig(BaseModel):
    """Settings for the parent date synchronization job."""

    work_item_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DATE_SYNC_TYPES),
        description="Child work item types to aggregate, in run order",
    )
    max_workers: int = Field(default=8, ge=1, description="Concurrent work item fetches")


class TagConfig(BaseModel):
    """Settings for the tag propagation job."""

    tag_format: str = Field(
        default="Task {prefix}", description="Tag template; {prefix} is the epic title prefix"
    )
    prefix_length: int = Field(default=2, ge=1, description="Characters taken from epic titles")

    @field_validator("tag_format")
    @classmethod
    def validate_tag_format(cls, v: str) -> str:
        """Validate the tag template only uses the {prefix} placeholder."""
        try:
            v.format(prefix="")
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"tag_format may only reference {{prefix}}, got: {v}") from e
        return v


class Relation(BaseModel):
    """A configured parent/child link."""

    child_id: int
    parent_id: int


class WorkItemTemplate(BaseModel):
    """A work item to create."""

    title: str
    type: str
    start_date: datetime | None = None
    target_date: datetime | None = None
    parent_id: int | None = None

    @field_validator("start_date", "target_date", mode="before")
    @classmethod
    def validate_dates(cls, v: Any) -> Any:
        """Accept plain dates (YAML parses 2024-01-01 as a date)."""
        if isinstance(v, date) and not isinstance(v, datetime):
            return datetime(v.year, v.month, v.day)
        return v


class AdoSyncConfig(BaseModel):
    """Complete adosync configuration."""

    devops: DevOpsConnection
    date_sync: DateSyncConfig = Field(default_factory=DateSyncConfig)
    tags: TagConfig = Field(default_factory=TagConfig)
    relations: list[Relation] = Field(default_factory=list[Relation])
    work_items: list[WorkItemTemplate] = Field(default_factory=list[WorkItemTemplate])
    jobs: list[str] = Field(default_factory=lambda: ["set_parent_dates"])

    @field_validator("jobs")
    @classmethod
    def validate_jobs(cls, v: list[str]) -> list[str]:
        """Ensure every configured job is known."""
        unknown = [name for name in v if name not in JOB_NAMES]
        if unknown:
            raise ValueError(
                f"Unknown job(s): {', '.join(unknown)}. Valid jobs: {', '.join(JOB_NAMES)}"
            )
        return v


def load_config(config_path: Path | str) -> AdoSyncConfig:
    """Load adosync configuration from YAML file.

    Args:
        config_path: Path to adosync_config.yaml file

    Returns:
        Validated AdoSyncConfig

    Raises:
        ConfigError: If the file doesn't exist, is empty, or is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with config_path.open() as f:
            data: Any = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse config file {config_path}: {e}") from e

    if not data:
        raise ConfigError(f"Empty configuration file: {config_path}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {config_path}")

    if "devops" not in data:
        raise ConfigError("Config must contain 'devops' section")

    try:
        return AdoSyncConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{e}") from e
