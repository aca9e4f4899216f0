"""
README.md tools.

Status codes that mean "wrong tool" rather than "failure" are answered
with a hint instead of an error, so the model can switch to the right
tool on its next step.
"""

from glassist.gitlab.client import GitLabClient
from glassist.tools.schemas import (
    CreateReadmeInput,
    DeleteReadmeInput,
    GetReadmeInput,
    UpdateReadmeInput,
)

README_PATH = "README.md"


async def get_readme_content(client: GitLabClient, args: GetReadmeInput) -> str:
    resp = await client.get_file(args.project_id, README_PATH, ref=args.branch)
    if not resp.ok:
        if resp.status_code == 404:
            return "README.md does not exist in this project."
        return f"Error retrieving README.md: {resp.error}"
    return resp.data


async def create_readme(client: GitLabClient, args: CreateReadmeInput) -> str:
    resp = await client.create_file(
        args.project_id,
        README_PATH,
        content=args.content,
        commit_message=args.commit_message,
        branch=args.branch,
    )
    if not resp.ok:
        if resp.status_code == 400 and "already exists" in resp.text:
            return "README.md already exists. Use updateReadme instead."
        return f"Error creating README.md: {resp.error}"
    return f"README.md created successfully in project {args.project_id}."


async def update_readme(client: GitLabClient, args: UpdateReadmeInput) -> str:
    resp = await client.update_file(
        args.project_id,
        README_PATH,
        content=args.content,
        commit_message=args.commit_message,
        branch=args.branch,
    )
    if not resp.ok:
        if resp.status_code == 404:
            return "README.md does not exist. Use createReadme instead."
        return f"Error updating README.md: {resp.error}"
    return f"README.md updated successfully in project {args.project_id}."


async def delete_readme(client: GitLabClient, args: DeleteReadmeInput) -> str:
    resp = await client.delete_file(
        args.project_id,
        README_PATH,
        commit_message=args.commit_message,
        branch=args.branch,
    )
    if not resp.ok:
        if resp.status_code == 404:
            return "README.md does not exist."
        return f"Error deleting README.md: {resp.error}"
    return f"README.md deleted successfully from project {args.project_id}."
