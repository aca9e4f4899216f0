"""
Tool registry: central dispatch for all GitLab tools.

The tool set is closed: every ToolName has exactly one ToolSpec, checked
when the registry is built. New tools are added to ToolName, given an
input model in schemas.py and a spec in TOOL_SPECS. Nothing else changes.

The registry is read-only once constructed and holds no per-call state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Awaitable, Callable, Mapping

from pydantic import BaseModel, ValidationError

from glassist.errors import GitLabConfigError, HistoryValidationError
from glassist.gitlab.client import GitLabClient
from glassist.tools import projects, readme
from glassist.tools.schemas import (
    CreateProjectInput,
    CreateReadmeInput,
    DeleteProjectInput,
    DeleteReadmeInput,
    GetReadmeInput,
    ListAllGroupsInput,
    ListAllProjectsInput,
    ToolName,
    UpdateProjectInput,
    UpdateReadmeInput,
)

logger = logging.getLogger(__name__)

Handler = Callable[[GitLabClient, BaseModel], Awaitable[str]]


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    input_model: type[BaseModel]
    handler: Handler

    def definition(self) -> dict:
        """OpenAI function-calling definition."""
        schema = self.input_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": schema,
            },
        }


@dataclass(frozen=True)
class ToolResult:
    """Text handed back to the model. is_error marks calls that never reached GitLab cleanly."""
    output: str
    is_error: bool = False


TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        ToolName.LIST_ALL_PROJECTS,
        "List all projects accessible to the authenticated user in the GitLab instance.",
        ListAllProjectsInput,
        projects.list_all_projects,
    ),
    ToolSpec(
        ToolName.CREATE_PROJECT,
        "Create a new project in a GitLab group.",
        CreateProjectInput,
        projects.create_project,
    ),
    ToolSpec(
        ToolName.UPDATE_PROJECT,
        "Update an existing project in a GitLab group.",
        UpdateProjectInput,
        projects.update_project,
    ),
    ToolSpec(
        ToolName.DELETE_PROJECT,
        "Delete a project from a GitLab group.",
        DeleteProjectInput,
        projects.delete_project,
    ),
    ToolSpec(
        ToolName.GET_README_CONTENT,
        "Retrieve the content of README.md from a GitLab project.",
        GetReadmeInput,
        readme.get_readme_content,
    ),
    ToolSpec(
        ToolName.CREATE_README,
        "Create a new README.md file in a GitLab project with user input for content.",
        CreateReadmeInput,
        readme.create_readme,
    ),
    ToolSpec(
        ToolName.UPDATE_README,
        "Update the content of README.md in a GitLab project.",
        UpdateReadmeInput,
        readme.update_readme,
    ),
    ToolSpec(
        ToolName.DELETE_README,
        "Delete README.md from a GitLab project.",
        DeleteReadmeInput,
        readme.delete_readme,
    ),
    ToolSpec(
        ToolName.LIST_ALL_GROUPS,
        "List all groups accessible to the authenticated user in the GitLab instance.",
        ListAllGroupsInput,
        projects.list_all_groups,
    ),
)


class ToolRegistry:
    """Immutable name -> ToolSpec mapping bound to one GitLab client."""

    def __init__(self, client: GitLabClient | None = None, specs: tuple[ToolSpec, ...] = TOOL_SPECS):
        self.client = client or GitLabClient.from_config()

        by_name = {spec.name.value: spec for spec in specs}
        missing = [t.value for t in ToolName if t.value not in by_name]
        if missing:
            raise ValueError(f"No tool spec for: {', '.join(missing)}")
        self._tools: Mapping[str, ToolSpec] = MappingProxyType(by_name)

        logger.info("Tool registry loaded: %s", list(self._tools.keys()))

    @property
    def tools(self) -> Mapping[str, ToolSpec]:
        return self._tools

    def get(self, name: str) -> ToolSpec | None:
        """Get a tool by name, or None if not registered."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """Return names of all registered tools."""
        return list(self._tools.keys())

    def definitions(self) -> list[dict]:
        """Tool definitions for the completion request."""
        return [spec.definition() for spec in self._tools.values()]

    def validate_input(self, name: str, args: dict) -> BaseModel:
        """
        Parse arguments for a tool, applying defaults.
        Raises HistoryValidationError for unknown tools and
        pydantic.ValidationError for bad arguments.
        """
        spec = self._tools.get(name)
        if spec is None:
            raise HistoryValidationError(f"unknown tool '{name}'")
        return spec.input_model.model_validate(args or {})

    async def run_tool(self, name: str, args: dict | None) -> ToolResult:
        """
        Run a tool by name and always return text. Unknown tools, bad
        arguments, a missing credential and handler crashes all come back
        as readable error strings with is_error set.
        """
        spec = self._tools.get(name)
        if spec is None:
            available = ", ".join(self._tools.keys()) or "none"
            logger.warning("Tool '%s' not found in registry", name)
            return ToolResult(f"Error: unknown tool '{name}'. Available: {available}", is_error=True)

        if args is None:
            return ToolResult(f"Error: arguments for {name} are not a JSON object", is_error=True)

        try:
            parsed = spec.input_model.model_validate(args)
        except ValidationError as e:
            logger.info("Invalid arguments for %s: %s", name, e)
            return ToolResult(f"Error: invalid arguments for {name}: {e}", is_error=True)

        start = time.monotonic()
        try:
            output = await spec.handler(self.client, parsed)
        except GitLabConfigError as e:
            logger.error("Tool %s not configured: %s", name, e)
            return ToolResult(f"Configuration error: {e}", is_error=True)
        except Exception as e:
            logger.exception("Tool %s crashed", name)
            return ToolResult(f"Error running {name}: {e}", is_error=True)
        elapsed_ms = (time.monotonic() - start) * 1000

        logger.info("Tool %s finished in %.0fms", name, elapsed_ms)
        return ToolResult(output)
