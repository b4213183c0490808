"""Immutable routing configuration passed into the planner and executor.

The planner and executor never read global settings. They receive a
RoutingConfig value at call time, which keeps the core deterministic and lets
tests supply synthetic module mappings.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ledger_sync.exceptions import UnknownModuleError
from ledger_sync.sync.identity import DEFAULT_TASK_PREFIXES, is_task_id


class RoutingConfig(BaseModel):
    """Module → repository routing plus naming conventions.

    Example:
        >>> routing = RoutingConfig(module_mapping={"App": "acme/app"})
        >>> routing.repository_for("App")
        'acme/app'
    """

    model_config = ConfigDict(frozen=True)

    module_mapping: dict[str, str] = Field(default_factory=dict, description="Ledger module -> owner/repo")
    task_prefixes: tuple[str, ...] = Field(default=DEFAULT_TASK_PREFIXES, description="Id prefixes of tasks")
    web_url: str = Field(default="https://github.com", description="Tracker web UI base URL")
    default_branch: str = Field(default="main", description="Branch new work branches start from")

    @field_validator("web_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def repository_for(self, module: str) -> str:
        """Resolve a module to its ``owner/repo``.

        Raises:
            UnknownModuleError: If the module has no mapping
        """
        repository = self.module_mapping.get(module)
        if not repository:
            raise UnknownModuleError(module)
        return repository

    def repositories(self) -> list[str]:
        """All distinct mapped repositories, sorted."""
        return sorted(set(self.module_mapping.values()))

    def is_task(self, item_id: str) -> bool:
        return is_task_id(item_id, self.task_prefixes)

    def branch_url(self, repository: str, branch_name: str) -> str:
        """Web URL of a branch, as the tracker displays it."""
        return f"{self.web_url}/{repository}/tree/{branch_name}"
