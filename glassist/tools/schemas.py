"""
Tool names and their typed inputs.

ToolName is the closed set of tools the model may call. Each tool has a
pydantic model for its arguments; field aliases are the camelCase names
the model sees in the JSON schema.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Visibility = Literal["private", "internal", "public"]


class ToolName(str, Enum):
    LIST_ALL_PROJECTS = "listAllProjects"
    CREATE_PROJECT = "createProject"
    UPDATE_PROJECT = "updateProject"
    DELETE_PROJECT = "deleteProject"
    GET_README_CONTENT = "getReadmeContent"
    CREATE_README = "createReadme"
    UPDATE_README = "updateReadme"
    DELETE_README = "deleteReadme"
    LIST_ALL_GROUPS = "listAllGroups"


class ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ListAllProjectsInput(ToolInput):
    pass


class ListAllGroupsInput(ToolInput):
    pass


class CreateProjectInput(ToolInput):
    name: str = Field(description="The name of the new project.")
    namespace_id: int = Field(
        alias="namespaceId",
        description="The ID of the GitLab group to create the project under. Must be an integer.",
    )
    description: str | None = Field(None, description="Optional description for the project.")
    visibility: Visibility = Field(
        "private",
        description="Visibility level: private, internal, or public. Defaults to private.",
    )


class UpdateProjectInput(ToolInput):
    project_id: int = Field(
        alias="projectId", description="The ID of the project to update. Must be an integer."
    )
    name: str | None = Field(None, description="Optional new name for the project.")
    description: str | None = Field(None, description="Optional new description for the project.")
    visibility: Visibility | None = Field(None, description="Optional new visibility level.")


class DeleteProjectInput(ToolInput):
    project_id: int = Field(
        alias="projectId", description="The ID of the project to delete. Must be an integer."
    )


class GetReadmeInput(ToolInput):
    project_id: int = Field(alias="projectId", description="The ID of the project. Must be an integer.")
    branch: str = Field("main", description="The branch to fetch README.md from.")


class CreateReadmeInput(ToolInput):
    project_id: int = Field(alias="projectId", description="The ID of the project. Must be an integer.")
    content: str = Field(description="The Markdown content for the new README.md.")
    commit_message: str = Field(
        "Create README.md", alias="commitMessage", description="The commit message."
    )
    branch: str = Field("main", description="The branch to create README.md on.")


class UpdateReadmeInput(ToolInput):
    project_id: int = Field(alias="projectId", description="The ID of the project. Must be an integer.")
    content: str = Field(description="The new Markdown content for README.md.")
    commit_message: str = Field(
        "Update README.md", alias="commitMessage", description="The commit message."
    )
    branch: str = Field("main", description="The branch to update README.md on.")


class DeleteReadmeInput(ToolInput):
    project_id: int = Field(alias="projectId", description="The ID of the project. Must be an integer.")
    commit_message: str = Field(
        "Delete README.md", alias="commitMessage", description="The commit message."
    )
    branch: str = Field("main", description="The branch to delete README.md from.")
