# aeo_dashboard/core/database.py
"""
Database connection manager for the AEO Dashboard data core.
Handles async PostgreSQL connections with pooling, retry logic, and transactions.

Every Postgres-backed store (cache durable tier, grant store, project store)
goes through this manager:
    from aeo_dashboard.core.database import get_db_manager

    db = await get_db_manager()
    row = await db.fetch_one("SELECT document FROM projects WHERE id = $1", project_id)
"""

import asyncio
import asyncpg
import logging
from contextlib import asynccontextmanager
from typing import Optional, List, Any

from config.settings import settings

logger = logging.getLogger(__name__)

__all__ = [
    'DatabaseManager',
    'db_manager',
    'get_db_manager',
]

# Retry configuration
MAX_RETRIES = 3
RETRY_DELAY_BASE = 0.1  # seconds, doubled per attempt

# Transient errors that should trigger retry
TRANSIENT_ERRORS = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionResetError,
    ConnectionRefusedError,
    TimeoutError,
)


class DatabaseManager:
    """
    Manages the asyncpg pool and query execution.

    Use the module-level ``db_manager`` / ``get_db_manager()`` rather than
    creating connections directly.
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn
        self.pool: Optional[asyncpg.Pool] = None
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize database connection pool."""
        if self.pool is not None:
            return

        async with self._connect_lock:
            if self.pool is not None:
                return
            dsn = self.dsn or settings.require_database_url()
            try:
                self.pool = await asyncpg.create_pool(
                    dsn,
                    min_size=1,
                    max_size=10,
                    command_timeout=60
                )
                logger.info("✅ Database connection pool established")
            except Exception as e:
                logger.error(f"❌ Failed to create database pool: {e}")
                raise

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("🔌 Database connection pool closed")

    # =========================================================================
    # Query Execution with Retry Logic
    # =========================================================================

    async def _execute_with_retry(self, operation: str, query: str, args: tuple) -> Any:
        """
        Run ``operation`` (a Connection method name) with retry on transient failures.

        Non-transient errors (constraint violations, disk full, ...) propagate
        immediately so callers can map them.
        """
        last_error: Optional[BaseException] = None

        for attempt in range(MAX_RETRIES):
            if not self.pool:
                await self.connect()
            try:
                async with self.pool.acquire() as conn:
                    return await getattr(conn, operation)(query, *args)

            except TRANSIENT_ERRORS as e:
                last_error = e
                if attempt < MAX_RETRIES - 1:
                    delay = RETRY_DELAY_BASE * (2 ** attempt)
                    logger.warning(
                        f"⚠️ Database {operation} failed (attempt {attempt + 1}/{MAX_RETRIES}), "
                        f"retrying in {delay:.2f}s: {e}"
                    )
                    await asyncio.sleep(delay)
                    if isinstance(e, (asyncpg.PostgresConnectionError, ConnectionResetError)):
                        await self._reset_pool()
                else:
                    logger.error(f"❌ Database {operation} failed after {MAX_RETRIES} attempts: {e}")

        raise last_error

    async def _reset_pool(self) -> None:
        """Reset the connection pool after connection failures."""
        logger.info("🔄 Resetting database connection pool...")
        try:
            await self.disconnect()
            await self.connect()
        except Exception as e:
            logger.error(f"❌ Failed to reset pool: {e}")

    async def fetch_one(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch single row from query."""
        return await self._execute_with_retry("fetchrow", query, args)

    async def fetch_all(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch all rows from query."""
        return await self._execute_with_retry("fetch", query, args)

    async def execute(self, query: str, *args) -> str:
        """Execute query without returning results."""
        return await self._execute_with_retry("execute", query, args)

    # =========================================================================
    # Transaction Support
    # =========================================================================

    @asynccontextmanager
    async def transaction(self):
        """
        Context manager for database transactions.

            async with db_manager.transaction() as conn:
                row = await conn.fetchrow("SELECT ... FOR UPDATE", ...)
                await conn.execute("UPDATE ...")
        """
        if not self.pool:
            await self.connect()

        async with self.pool.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                yield conn
            except Exception as e:
                await tx.rollback()
                logger.warning(f"↩️ Transaction rolled back: {e}")
                raise
            else:
                await tx.commit()

    # =========================================================================
    # Health Check
    # =========================================================================

    async def health_check(self) -> dict:
        """Check database connectivity and pool status."""
        try:
            result = await self.fetch_one("SELECT 1 as ok, NOW() as server_time")

            pool_info = {}
            if self.pool:
                pool_info = {
                    "pool_size": self.pool.get_size(),
                    "pool_free": self.pool.get_idle_size(),
                }

            return {
                "status": "healthy",
                "connected": True,
                "server_time": result["server_time"].isoformat() if result else None,
                **pool_info
            }

        except Exception as e:
            logger.error(f"❌ Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e)
            }


# =============================================================================
# Global Instance & Getter
# =============================================================================

db_manager = DatabaseManager()


async def get_db_manager() -> DatabaseManager:
    """Get the shared database manager, connecting on first use."""
    if not db_manager.pool:
        await db_manager.connect()
    return db_manager
