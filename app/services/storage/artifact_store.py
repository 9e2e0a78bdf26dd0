"""Persistence for generated analysis artifacts.

One record per ``ArtifactKey``; ``upsert`` replaces the whole record. Nothing here
deletes records.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Protocol

from supabase import Client
from supabase import create_client

from app.core.exceptions import ConfigurationError
from app.core.exceptions import StoreError
from app.models.analysis_models import ArtifactKey

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    async def get(self, key: ArtifactKey) -> dict[str, Any] | None: ...

    async def upsert(self, key: ArtifactKey, record: dict[str, Any]) -> None: ...


class InMemoryArtifactStore:
    """Process-local store, used when no database is configured and in tests."""

    def __init__(self) -> None:
        self._records: dict[ArtifactKey, dict[str, Any]] = {}

    async def get(self, key: ArtifactKey) -> dict[str, Any] | None:
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def upsert(self, key: ArtifactKey, record: dict[str, Any]) -> None:
        self._records[key] = copy.deepcopy(record)

    def __len__(self) -> int:
        return len(self._records)


class SupabaseArtifactStore:
    """Stores every artifact kind in a single table keyed by (kind, project_id, question_id).

    Expected schema::

        create table analysis_artifacts (
            kind text not null,
            project_id text not null,
            question_id text not null default '',
            payload jsonb not null,
            updated_at timestamptz not null,
            primary key (kind, project_id, question_id)
        );
    """

    def __init__(self, client: Client, table: str = "analysis_artifacts"):
        self.sb = client
        self.table = table

    @classmethod
    def from_credentials(cls, url: str | None, key: str | None, table: str) -> "SupabaseArtifactStore":
        if not url or not key:
            logger.error("Missing Supabase configuration for artifact store")
            raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase storage backend")
        logger.info("Initializing Supabase artifact store on table %s", table)
        return cls(create_client(url, key), table)

    async def get(self, key: ArtifactKey) -> dict[str, Any] | None:
        try:
            # Offload supabase calls to a thread to avoid blocking the event loop
            resp = await asyncio.to_thread(
                lambda: self.sb.table(self.table)
                .select("payload")
                .eq("kind", key.kind.value)
                .eq("project_id", key.project_id)
                .eq("question_id", key.question_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.exception("Failed to read artifact %s", key)
            raise StoreError(f"Failed to read {key.kind.value} artifact for project {key.project_id}") from e

        rows = resp.data or []
        if not rows:
            return None
        return rows[0]["payload"]

    async def upsert(self, key: ArtifactKey, record: dict[str, Any]) -> None:
        row = {
            "kind": key.kind.value,
            "project_id": key.project_id,
            "question_id": key.question_id,
            "payload": record,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await asyncio.to_thread(
                lambda: self.sb.table(self.table).upsert(row, on_conflict="kind,project_id,question_id").execute()
            )
        except Exception as e:
            logger.exception("Failed to upsert artifact %s", key)
            raise StoreError(f"Failed to save {key.kind.value} artifact for project {key.project_id}") from e
        logger.debug("Upserted %s artifact for project %s", key.kind.value, key.project_id)
