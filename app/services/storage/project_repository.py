"""Read access to projects and their comments."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from pydantic import ValidationError
from supabase import Client
from supabase import create_client

from app.core.exceptions import ConfigurationError
from app.core.exceptions import StoreError
from app.models.analysis_models import Comment
from app.models.analysis_models import Project

logger = logging.getLogger(__name__)


class ProjectRepository(Protocol):
    async def get_project(self, project_id: str) -> Project | None: ...

    async def list_comments(self, project_id: str) -> list[Comment]: ...


class InMemoryProjectRepository:
    def __init__(self, projects: list[Project] | None = None, comments: list[Comment] | None = None):
        self.projects = {p.id: p for p in projects or []}
        self.comments = list(comments or [])

    async def get_project(self, project_id: str) -> Project | None:
        return self.projects.get(project_id)

    async def list_comments(self, project_id: str) -> list[Comment]:
        return [c for c in self.comments if c.project_id == project_id]


class SupabaseProjectRepository:
    """Loads projects (questions embedded as jsonb) and comments from Supabase."""

    def __init__(self, client: Client, projects_table: str = "projects", comments_table: str = "comments"):
        self.sb = client
        self.projects_table = projects_table
        self.comments_table = comments_table

    @classmethod
    def from_credentials(
        cls, url: str | None, key: str | None, projects_table: str, comments_table: str
    ) -> "SupabaseProjectRepository":
        if not url or not key:
            logger.error("Missing Supabase configuration for project repository")
            raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase storage backend")
        return cls(create_client(url, key), projects_table, comments_table)

    async def get_project(self, project_id: str) -> Project | None:
        try:
            resp = await asyncio.to_thread(
                lambda: self.sb.table(self.projects_table).select("*").eq("id", project_id).limit(1).execute()
            )
        except Exception as e:
            logger.exception("Failed to load project %s", project_id)
            raise StoreError(f"Failed to load project {project_id}") from e

        rows = resp.data or []
        if not rows:
            return None
        try:
            return Project.model_validate(rows[0])
        except ValidationError as e:
            logger.error("Project %s has an invalid shape: %s", project_id, e)
            raise StoreError(f"Project {project_id} is malformed") from e

    async def list_comments(self, project_id: str) -> list[Comment]:
        try:
            resp = await asyncio.to_thread(
                lambda: self.sb.table(self.comments_table).select("*").eq("project_id", project_id).execute()
            )
        except Exception as e:
            logger.exception("Failed to load comments for project %s", project_id)
            raise StoreError(f"Failed to load comments for project {project_id}") from e

        try:
            return [Comment.model_validate(row) for row in resp.data or []]
        except ValidationError as e:
            logger.error("Comments for project %s have an invalid shape: %s", project_id, e)
            raise StoreError(f"Comments for project {project_id} are malformed") from e
