"""
Project and group tools.
Each handler makes one GitLabClient call and renders the outcome as text.
"""

import json
import logging

from glassist.gitlab.client import GitLabClient
from glassist.tools.schemas import (
    CreateProjectInput,
    DeleteProjectInput,
    ListAllGroupsInput,
    ListAllProjectsInput,
    UpdateProjectInput,
)

logger = logging.getLogger(__name__)


def _format_project(project: dict) -> str:
    topics = ", ".join(project.get("tag_list") or project.get("topics") or []) or "No topics"
    description = project.get("description") or "No description"
    namespace = (project.get("namespace") or {}).get("name") or "Unknown namespace"
    creator = project.get("creator_id") or "Unknown"
    return (
        f"{project.get('id')}:{project.get('name')} ({namespace}) by creator {creator}, "
        f"description: {description}, topics: {topics}"
    )


def _format_group(group: dict) -> str:
    description = group.get("description") or "No description"
    visibility = group.get("visibility") or "Unknown"
    members = group.get("member_count") or "Unknown"
    return (
        f"group_id: {group.get('id')}, group name: {group.get('name')} "
        f"(path: {group.get('path') or 'Unknown'}), description: {description}, "
        f"visibility: {visibility}, members: {members}"
    )


async def list_all_projects(client: GitLabClient, args: ListAllProjectsInput) -> str:
    resp = await client.list_projects()
    if not resp.ok:
        return f"Error listing projects: {resp.error}"
    projects = resp.data or []
    if not projects:
        return "No projects found."
    lines = [f"Total projects retrieved: {len(projects)}"]
    lines.extend(_format_project(p) for p in projects)
    return "\n".join(lines)


async def list_all_groups(client: GitLabClient, args: ListAllGroupsInput) -> str:
    resp = await client.list_groups()
    if not resp.ok:
        return f"Error listing groups: {resp.error}"
    groups = resp.data or []
    if not groups:
        return "No groups found."
    lines = [f"Total groups retrieved: {len(groups)}"]
    lines.extend(_format_group(g) for g in groups)
    return "\n".join(lines)


async def create_project(client: GitLabClient, args: CreateProjectInput) -> str:
    resp = await client.create_project(
        name=args.name,
        namespace_id=args.namespace_id,
        description=args.description,
        visibility=args.visibility,
    )
    if not resp.ok:
        return f"Error creating project: {resp.error}"
    logger.info("Created project %s in namespace %s", args.name, args.namespace_id)
    return json.dumps(resp.data)


async def update_project(client: GitLabClient, args: UpdateProjectInput) -> str:
    changes = {
        key: value
        for key, value in (
            ("name", args.name),
            ("description", args.description),
            ("visibility", args.visibility),
        )
        if value
    }
    if not changes:
        return "No updates provided."
    resp = await client.update_project(args.project_id, changes)
    if not resp.ok:
        return f"Error updating project: {resp.error}"
    return json.dumps(resp.data)


async def delete_project(client: GitLabClient, args: DeleteProjectInput) -> str:
    resp = await client.delete_project(args.project_id)
    if not resp.ok:
        return f"Error deleting project: {resp.error}"
    logger.info("Deleted project %s", args.project_id)
    return f"Project {args.project_id} deleted successfully."
