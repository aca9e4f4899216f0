"""
GitLab REST client (API v4).

Every call returns a GitLabResponse instead of raising, so tool handlers
always have something they can turn into text for the model. The only
exception that escapes is GitLabConfigError, when no token is configured.

List endpoints page forward with per_page=100 until GitLab returns an
empty page, bounded by max_pages.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from glassist.config import get_config
from glassist.errors import GitLabConfigError

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://gitlab.com/api/v4"


@dataclass
class GitLabResponse:
    """Standardized result of a GitLab call."""
    ok: bool
    status_code: int = 0
    data: Any = None
    text: str = ""
    error: str = ""


class GitLabClient:
    """Thin async wrapper over the handful of GitLab endpoints the tools use."""

    def __init__(
        self,
        url: str = "",
        token: str = "",
        timeout: float = 30,
        per_page: int = 100,
        max_pages: int = 100,
    ):
        self.url = (url or DEFAULT_URL).rstrip("/")
        self.token = token
        self.timeout = timeout
        self.per_page = per_page
        self.max_pages = max_pages

    @classmethod
    def from_config(cls) -> GitLabClient:
        gl_cfg = get_config().get("gitlab", {})
        return cls(
            url=gl_cfg.get("url", ""),
            token=gl_cfg.get("token", ""),
            timeout=gl_cfg.get("timeout", 30),
            per_page=gl_cfg.get("per_page", 100),
            max_pages=gl_cfg.get("max_pages", 100),
        )

    def _headers(self) -> dict:
        if not self.token:
            raise GitLabConfigError("GITLAB_TOKEN environment variable is not set.")
        return {
            "PRIVATE-TOKEN": self.token,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _file_endpoint(project_id: int, file_path: str) -> str:
        return f"projects/{project_id}/repository/files/{quote(file_path, safe='')}"

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json: dict | None = None,
    ) -> GitLabResponse:
        try:
            resp = await client.request(
                method,
                f"{self.url}/{endpoint}",
                params=params,
                json=json,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.warning("GitLab %s %s failed: %s", method, endpoint, e)
            return GitLabResponse(ok=False, error=str(e) or type(e).__name__)

        if resp.status_code >= 400:
            logger.debug("GitLab %s %s -> HTTP %d", method, endpoint, resp.status_code)
            return GitLabResponse(
                ok=False,
                status_code=resp.status_code,
                text=resp.text,
                error=f"HTTP error! status: {resp.status_code}",
            )

        data = None
        if resp.status_code != 204:
            try:
                data = resp.json()
            except ValueError:
                data = None
        return GitLabResponse(ok=True, status_code=resp.status_code, data=data)

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        json: dict | None = None,
    ) -> GitLabResponse:
        self._headers()  # fail fast before opening a connection
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._send(client, method, endpoint, params=params, json=json)

    async def _paginate(self, endpoint: str) -> GitLabResponse:
        """GET every page of a list endpoint and concatenate the items."""
        self._headers()
        params = {"order_by": "id", "sort": "asc", "per_page": self.per_page}
        items: list = []
        page = 1

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            while True:
                if page > self.max_pages:
                    logger.warning(
                        "GitLab %s: stopped after %d pages (%d items), max_pages reached",
                        endpoint, self.max_pages, len(items),
                    )
                    break
                resp = await self._send(client, "GET", endpoint, params={**params, "page": page})
                if not resp.ok:
                    return resp
                batch = resp.data or []
                if not batch:
                    break
                items.extend(batch)
                page += 1

        logger.debug("GitLab %s: %d items over %d pages", endpoint, len(items), page - 1)
        return GitLabResponse(ok=True, status_code=200, data=items)

    # ─ Projects / groups ─────────────────────────────────────────────────

    async def list_projects(self) -> GitLabResponse:
        return await self._paginate("projects")

    async def list_groups(self) -> GitLabResponse:
        return await self._paginate("groups")

    async def create_project(
        self,
        name: str,
        namespace_id: int,
        description: str | None = None,
        visibility: str = "private",
    ) -> GitLabResponse:
        data: dict = {"name": name, "namespace_id": namespace_id, "visibility": visibility}
        if description:
            data["description"] = description
        return await self._request("POST", "projects", json=data)

    async def update_project(self, project_id: int, changes: dict) -> GitLabResponse:
        return await self._request("PUT", f"projects/{project_id}", json=changes)

    async def delete_project(self, project_id: int) -> GitLabResponse:
        return await self._request("DELETE", f"projects/{project_id}")

    # ─ Repository files ──────────────────────────────────────────────────

    async def get_file(self, project_id: int, file_path: str, ref: str = "main") -> GitLabResponse:
        """Fetch a file; on success data is the decoded UTF-8 text."""
        resp = await self._request(
            "GET", self._file_endpoint(project_id, file_path), params={"ref": ref}
        )
        if not resp.ok:
            return resp
        encoded = (resp.data or {}).get("content", "")
        try:
            text = base64.b64decode(encoded).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            return GitLabResponse(
                ok=False,
                status_code=resp.status_code,
                error=f"could not decode file content: {e}",
            )
        return GitLabResponse(ok=True, status_code=resp.status_code, data=text)

    async def create_file(
        self,
        project_id: int,
        file_path: str,
        content: str,
        commit_message: str,
        branch: str = "main",
    ) -> GitLabResponse:
        return await self._request(
            "POST",
            self._file_endpoint(project_id, file_path),
            json={"branch": branch, "content": content, "commit_message": commit_message},
        )

    async def update_file(
        self,
        project_id: int,
        file_path: str,
        content: str,
        commit_message: str,
        branch: str = "main",
    ) -> GitLabResponse:
        return await self._request(
            "PUT",
            self._file_endpoint(project_id, file_path),
            json={"branch": branch, "content": content, "commit_message": commit_message},
        )

    async def delete_file(
        self,
        project_id: int,
        file_path: str,
        commit_message: str,
        branch: str = "main",
    ) -> GitLabResponse:
        return await self._request(
            "DELETE",
            self._file_endpoint(project_id, file_path),
            json={"branch": branch, "commit_message": commit_message},
        )
