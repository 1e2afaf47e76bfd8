# aeo_dashboard/integrations/webhooks/project_store.py
"""
Project record access for webhook configuration and delivery status.

update_project() merges the given top-level fields into the stored record;
it never replaces the whole document.
"""

import copy
import json
import logging
from typing import Any, Dict, Optional, Protocol

from ...core.database import DatabaseManager, db_manager

logger = logging.getLogger(__name__)


class ProjectStore(Protocol):
    async def get_project(self, project_id: str) -> Optional[Dict[str, Any]]: ...

    async def update_project(self, project_id: str, fields: Dict[str, Any]) -> None: ...


class MemoryProjectStore:
    """Process-local project records; returned documents are copies."""

    def __init__(self, projects: Optional[Dict[str, Dict[str, Any]]] = None):
        self._projects: Dict[str, Dict[str, Any]] = copy.deepcopy(projects or {})

    async def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        project = self._projects.get(project_id)
        return copy.deepcopy(project) if project is not None else None

    async def update_project(self, project_id: str, fields: Dict[str, Any]) -> None:
        if project_id not in self._projects:
            raise KeyError(f"Project {project_id} not found")
        self._projects[project_id].update(copy.deepcopy(fields))

    async def put_project(self, project: Dict[str, Any]) -> None:
        self._projects[project['id']] = copy.deepcopy(project)


class PostgresProjectStore:
    """Projects as JSONB documents; updates use a top-level ``||`` merge."""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager

    @staticmethod
    def get_migration_sql() -> str:
        """Return SQL to create the projects table"""
        return """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            document JSONB NOT NULL DEFAULT '{}'::jsonb,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        """

    async def ensure_schema(self) -> None:
        await self.db.execute(self.get_migration_sql())

    async def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        row = await self.db.fetch_one("SELECT document FROM projects WHERE id = $1", project_id)
        if not row:
            return None
        document = row['document']
        if isinstance(document, str):
            document = json.loads(document)
        return {**document, 'id': project_id}

    async def update_project(self, project_id: str, fields: Dict[str, Any]) -> None:
        result = await self.db.execute(
            '''
            UPDATE projects
            SET document = document || $2::jsonb, updated_at = now()
            WHERE id = $1
            ''',
            project_id, json.dumps(fields)
        )
        if result == "UPDATE 0":
            raise KeyError(f"Project {project_id} not found")
