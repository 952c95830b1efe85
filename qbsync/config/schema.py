# qbsync Configuration Schema
# Pydantic models for YAML configuration validation

import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from qbsync.errors import ConfigError


class MoodleInstance(BaseModel):
    """Connection settings for one Moodle site."""

    url: str = Field(description="Base URL of the Moodle site")
    token: str = Field(description="Webservice token (passed through untouched)")
    timeout: float = Field(default=60.0, gt=0, description="HTTP timeout in seconds")

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Store the URL without a trailing slash."""
        return v.rstrip("/")


class RepositoryConfig(BaseModel):
    """Local question repository settings."""

    root_directory: str = Field(default="~/questionbank", description="Directory holding question repositories")
    use_git: bool = Field(default=False, description="Track question files with git")
    ignore_category: str | None = Field(
        default=None, description="Regex; categories with a matching name are not imported"
    )

    @field_validator("root_directory")
    @classmethod
    def expand_path(cls, v: str) -> str:
        """Expand ~ in path."""
        return str(Path(v).expanduser())

    @field_validator("ignore_category")
    @classmethod
    def check_pattern(cls, v: str | None) -> str | None:
        """Reject patterns that do not compile."""
        if v is None:
            return None
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid regular expression: {e}") from e
        return v


class OutputConfig(BaseModel):
    """Output configuration."""

    verbose: bool = Field(default=False, description="Enable verbose output")
    colored: bool = Field(default=True, description="Enable colored output")


class QbsyncConfig(BaseModel):
    """Root configuration model for qbsync."""

    instances: dict[str, MoodleInstance] = Field(default_factory=dict, description="Moodle sites by name")
    default_instance: str | None = Field(default=None, description="Instance used when none is given")
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig, description="Repository settings")
    output: OutputConfig = Field(default_factory=OutputConfig, description="Output settings")

    @model_validator(mode="after")
    def check_default_instance(self) -> "QbsyncConfig":
        """Default instance must be one of the configured instances."""
        if self.default_instance is not None and self.default_instance not in self.instances:
            raise ValueError(f"default_instance '{self.default_instance}' is not a configured instance")
        return self

    def get_instance(self, name: str | None = None) -> tuple[str, MoodleInstance]:
        """
        Look up a Moodle instance.

        Args:
            name: Instance name. Falls back to ``default_instance``.

        Returns:
            Tuple of (name, instance).

        Raises:
            ConfigError: If no instance is given or it is not configured.
        """
        name = name or self.default_instance
        if name is None:
            if len(self.instances) == 1:
                name = next(iter(self.instances))
            else:
                raise ConfigError("No Moodle instance given and no default_instance configured.")
        instance = self.instances.get(name)
        if instance is None:
            raise ConfigError(f"Moodle instance '{name}' is not configured.")
        return name, instance
