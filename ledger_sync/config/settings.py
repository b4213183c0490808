"""
Configuration system using Pydantic for type-safe settings management.

Settings come from a YAML file (with ``${VAR}`` interpolation) or purely from
environment variables prefixed ``LEDGER_SYNC_``, nested with ``__``:

    LEDGER_SYNC_LEDGER__API_TOKEN=secret_...
    LEDGER_SYNC_SYNC__MODULE_MAPPING='{"App": "acme/app"}'
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ledger_sync.config.routing import RoutingConfig
from ledger_sync.exceptions import ConfigurationError
from ledger_sync.sync.identity import DEFAULT_TASK_PREFIXES


class LedgerConfig(BaseModel):
    """Notion ledger configuration.

    The bug database is required; the task database is optional and tasks
    are simply absent from the snapshot when it is not configured.
    """

    api_token: SecretStr = Field(..., description="Notion integration token")
    bug_database_id: str = Field(..., min_length=1, description="Notion database holding bugs")
    task_database_id: str | None = Field(default=None, description="Notion database holding tasks")
    base_url: str = Field(default="https://api.notion.com/v1", description="Notion API base URL")
    api_version: str = Field(default="2022-06-28", description="Value of the Notion-Version header")
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")


class TrackerConfig(BaseModel):
    """GitHub tracker configuration."""

    provider_type: Literal["github"] = Field(default="github", description="Type of tracker")
    api_token: SecretStr = Field(..., description="GitHub personal access token")
    base_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    web_url: str = Field(default="https://github.com", description="GitHub web UI base URL")
    sync_label: str = Field(default="notion-sync", min_length=1, description="Label marking synced issues")


class SyncConfig(BaseModel):
    """Reconciliation behavior configuration."""

    module_mapping: dict[str, str] = Field(..., description="Ledger module -> owner/repo")
    task_prefixes: list[str] = Field(default_factory=lambda: list(DEFAULT_TASK_PREFIXES))
    default_branch: str = Field(default="main", description="Branch new work branches start from")
    interval_minutes: int = Field(default=5, ge=1, le=1440, description="Minutes between scheduled passes")

    @field_validator("module_mapping", mode="before")
    @classmethod
    def _parse_module_mapping(cls, value: Any) -> Any:
        """Accept the mapping as a JSON object string as well as a dict."""
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise ValueError(f"module_mapping is not valid JSON: {e}") from e
        if not value:
            raise ValueError("module_mapping must map at least one module to a repository")
        return value

    @field_validator("module_mapping")
    @classmethod
    def _validate_repositories(cls, value: dict[str, str]) -> dict[str, str]:
        for module, repository in value.items():
            owner, _, name = repository.partition("/")
            if not owner or not name:
                raise ValueError(f"Repository for module {module!r} must be owner/name, got {repository!r}")
        return value


class WebhookConfig(BaseModel):
    """Webhook server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind address")  # nosec B104
    port: int = Field(default=3000, ge=1, le=65535, description="Listen port")


class SyncSettings(BaseSettings):
    """Main ledger-sync settings.

    Combines all configuration sections and provides loading from YAML
    files with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_SYNC_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    ledger: LedgerConfig
    tracker: TrackerConfig
    sync: SyncConfig
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    def routing(self) -> RoutingConfig:
        """Build the immutable routing value handed to the sync core."""
        return RoutingConfig(
            module_mapping=dict(self.sync.module_mapping),
            task_prefixes=tuple(self.sync.task_prefixes),
            web_url=self.tracker.web_url,
            default_branch=self.sync.default_branch,
        )

    @classmethod
    def from_yaml(cls, config_path: str) -> SyncSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} and ${VAR_NAME:-default} substitution.

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file) as f:
                yaml_content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @classmethod
    def from_env(cls) -> SyncSettings:
        """Load settings from ``LEDGER_SYNC_*`` environment variables only."""
        try:
            return cls()
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration from environment: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines are left untouched.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
