"""
PostgreSQL Client

Async PostgreSQL client on an asyncpg connection pool. Provides the
query / query_row / execute access pattern used by service repositories.

Usage:
    from core.postgres_client import AsyncPostgresClient

    db = AsyncPostgresClient.from_config(settings.infrastructure, "email_campaign_service")

    async with db:
        rows = await db.query("SELECT * FROM email_campaign.campaigns WHERE status = $1", ["scheduled"])
"""

import logging
from typing import Any, Dict, List, Optional

import asyncpg

logger = logging.getLogger(__name__)


class AsyncPostgresClient:
    """
    PostgreSQL client backed by a lazily created asyncpg pool.

    Entering the async context ensures the pool exists; the pool itself stays
    open until close() is called.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "postgres",
        username: str = "postgres",
        password: str = "",
        user_id: str = "service",
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.username = username
        self.password = password
        self.user_id = user_id
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self._pool: Optional[asyncpg.Pool] = None

    @classmethod
    def from_config(cls, infra, user_id: str) -> "AsyncPostgresClient":
        """Build from an InfraConfig"""
        return cls(
            host=infra.postgres_host,
            port=infra.postgres_port,
            database=infra.postgres_db,
            username=infra.postgres_user,
            password=infra.postgres_password,
            user_id=user_id,
            min_size=infra.postgres_pool_min_size,
            max_size=infra.postgres_pool_max_size,
        )

    async def connect(self) -> None:
        """Create the connection pool if needed"""
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.username,
            password=self.password,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.command_timeout,
            server_settings={"application_name": self.user_id},
        )
        logger.info(f"PostgreSQL pool created for {self.user_id}: {self.host}:{self.port}/{self.database}")

    async def close(self) -> None:
        """Close the connection pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.user_id}")

    async def __aenter__(self):
        """Async context manager entry"""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        return False

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgreSQL client not connected. Call connect() first.")
        return self._pool

    async def health_check(self) -> Optional[Dict]:
        """Check database health"""
        try:
            await self.connect()
            row = await self.query_row("SELECT 1 AS healthy")
            return {"healthy": bool(row and row.get("healthy") == 1)}
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return None

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        rows = await self.pool.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        row = await self.pool.fetchrow(sql, *(params or []))
        return dict(row) if row is not None else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> int:
        """Execute a statement and return the affected row count"""
        status = await self.pool.execute(sql, *(params or []))
        return _affected_rows(status)

    async def execute_script(self, sql: str) -> None:
        """Execute a multi-statement script (no parameters)"""
        async with self.pool.acquire() as conn:
            await conn.execute(sql)


def _affected_rows(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 3" or "INSERT 0 1"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError, IndexError):
        return 0


__all__ = ["AsyncPostgresClient"]
