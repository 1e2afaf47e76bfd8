# aeo_dashboard/integrations/google_workspace/grant_store.py
"""
Persistence for delegated access grants, one per user.

The Postgres store keeps the access token encrypted (Fernet via core.crypto)
in the google_integrations table. Saving always replaces the whole grant.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from ...core.crypto import decrypt_token, encrypt_token
from ...core.database import DatabaseManager, db_manager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DelegatedAccessGrant:
    access_token: str
    expires_at: int  # epoch ms
    scopes: str
    connected_at: str  # ISO timestamp
    account_email: Optional[str] = None

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expires_at

    def to_public_dict(self) -> Dict[str, Any]:
        """Grant details safe to show in the UI (no token)."""
        data = asdict(self)
        data.pop('access_token')
        return data


class GrantStore(Protocol):
    async def load_grant(self, user_id: str) -> Optional[DelegatedAccessGrant]: ...

    async def save_grant(self, user_id: str, grant: DelegatedAccessGrant) -> None: ...

    async def clear_grant(self, user_id: str) -> None: ...


class MemoryGrantStore:
    """Process-local store for single-worker deployments and tests."""

    def __init__(self):
        self._grants: Dict[str, DelegatedAccessGrant] = {}

    async def load_grant(self, user_id: str) -> Optional[DelegatedAccessGrant]:
        return self._grants.get(user_id)

    async def save_grant(self, user_id: str, grant: DelegatedAccessGrant) -> None:
        self._grants[user_id] = grant

    async def clear_grant(self, user_id: str) -> None:
        self._grants.pop(user_id, None)


class PostgresGrantStore:
    """Grants in Postgres with the access token encrypted at rest."""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager

    @staticmethod
    def get_migration_sql() -> str:
        """Return SQL to create the grant table"""
        return """
        CREATE TABLE IF NOT EXISTS google_integrations (
            user_id TEXT PRIMARY KEY,
            access_token_encrypted TEXT NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            scopes TEXT NOT NULL DEFAULT '',
            connected_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            account_email TEXT
        );
        """

    async def ensure_schema(self) -> None:
        await self.db.execute(self.get_migration_sql())

    async def load_grant(self, user_id: str) -> Optional[DelegatedAccessGrant]:
        row = await self.db.fetch_one(
            '''
            SELECT access_token_encrypted, expires_at, scopes, connected_at, account_email
            FROM google_integrations
            WHERE user_id = $1
            ''',
            user_id
        )
        if not row:
            return None

        return DelegatedAccessGrant(
            access_token=decrypt_token(row['access_token_encrypted']),
            expires_at=int(row['expires_at'].timestamp() * 1000),
            scopes=row['scopes'],
            connected_at=row['connected_at'].isoformat(),
            account_email=row['account_email'],
        )

    async def save_grant(self, user_id: str, grant: DelegatedAccessGrant) -> None:
        await self.db.execute(
            '''
            INSERT INTO google_integrations
                (user_id, access_token_encrypted, expires_at, scopes, connected_at, account_email)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (user_id) DO UPDATE SET
                access_token_encrypted = EXCLUDED.access_token_encrypted,
                expires_at = EXCLUDED.expires_at,
                scopes = EXCLUDED.scopes,
                connected_at = EXCLUDED.connected_at,
                account_email = EXCLUDED.account_email
            ''',
            user_id,
            encrypt_token(grant.access_token),
            datetime.fromtimestamp(grant.expires_at / 1000, tz=timezone.utc),
            grant.scopes,
            datetime.fromisoformat(grant.connected_at),
            grant.account_email,
        )
        logger.info(f"💾 Google grant saved for user {user_id}")

    async def clear_grant(self, user_id: str) -> None:
        await self.db.execute("DELETE FROM google_integrations WHERE user_id = $1", user_id)
        logger.info(f"🔌 Google grant removed for user {user_id}")
