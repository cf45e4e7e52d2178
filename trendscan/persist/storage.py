"""Token cache persisted in SQLite."""

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite
import structlog
from pydantic import ValidationError

from ..core.errors import CacheError
from ..core.interfaces import TokenStore
from ..core.types import CachedTokenRecord

logger = structlog.get_logger(__name__)


class SQLiteTokenCache(TokenStore):
    """SQLite-based token cache implementation.

    One JSON record per lowercased token address. Every write replaces the
    whole record; concurrent writers race and the last one wins.
    """

    def __init__(self, db_path: str = "trendscan.sqlite", timeout: float = 30.0) -> None:
        """Initialize SQLite token cache.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path
        self.timeout = timeout

        logger.info("SQLite token cache initialized", db_path=db_path)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self.db_path, timeout=self.timeout) as db:
                yield db
        except (aiosqlite.Error, OSError) as e:
            logger.error("Token cache operation failed", db_path=self.db_path, error=str(e))
            raise CacheError(f"Token cache unavailable: {e}") from e

    async def initialize(self) -> None:
        """Initialize database tables."""
        async with self._connect() as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS tokens (
                    address TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_ts REAL NOT NULL
                )
            """)

            # Advisory leases keyed by operation name
            await db.execute("""
                CREATE TABLE IF NOT EXISTS locks (
                    name TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    expires_ts REAL NOT NULL
                )
            """)

            await db.commit()

        logger.info("Database tables initialized")

    async def get(self, address: str) -> CachedTokenRecord | None:
        """Load the record stored under a token address.

        Args:
            address: Token address (any case)

        Returns:
            Cached record or None if not found
        """
        key = address.lower()
        async with self._connect() as db:
            async with db.execute(
                "SELECT value FROM tokens WHERE address = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None

        try:
            return CachedTokenRecord.model_validate_json(row[0])
        except ValidationError as e:
            logger.error("Failed to deserialize cached token", address=key, error=str(e))
            return None

    async def set(self, record: CachedTokenRecord) -> None:
        """Insert or overwrite the record of a token.

        Args:
            record: Scored record, stored under its lowercased address
        """
        key = record.address.lower()
        value = record.model_dump_json(by_alias=True)

        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO tokens (address, value, updated_ts)
                VALUES (?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                    value = excluded.value,
                    updated_ts = excluded.updated_ts
            """,
                (key, value, time.time()),
            )
            await db.commit()

        logger.debug(
            "Token cached",
            address=key,
            chain=record.chain_name,
            trending_score=record.trending_score,
        )

    async def exists(self, address: str) -> bool:
        async with self._connect() as db:
            async with db.execute(
                "SELECT 1 FROM tokens WHERE address = ?", (address.lower(),)
            ) as cursor:
                row = await cursor.fetchone()
        return row is not None

    async def list_keys(self) -> list[str]:
        async with self._connect() as db:
            async with db.execute("SELECT address FROM tokens") as cursor:
                rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def list_records(self) -> list[CachedTokenRecord]:
        """Load every record, skipping rows that no longer decode.

        Returns:
            List of cached records
        """
        async with self._connect() as db:
            async with db.execute("SELECT address, value FROM tokens") as cursor:
                rows = await cursor.fetchall()

        records = []
        for address, value in rows:
            try:
                records.append(CachedTokenRecord.model_validate_json(value))
            except ValidationError as e:
                logger.warning("Skipping undecodable cache row", address=address, error=str(e))

        logger.debug("Loaded cached tokens", count=len(records), rows=len(rows))
        return records

    async def acquire_lock(self, name: str, owner: str, lease_seconds: float) -> bool:
        """Take an advisory lease on ``name``.

        A lease held by another owner blocks until it expires; the same owner
        may renew it.

        Returns:
            True if the lease is now held by ``owner``
        """
        now = time.time()
        async with self._connect() as db:
            cursor = await db.execute(
                """
                INSERT INTO locks (name, owner, expires_ts)
                VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    owner = excluded.owner,
                    expires_ts = excluded.expires_ts
                WHERE locks.owner = excluded.owner OR locks.expires_ts <= ?
            """,
                (name, owner, now + lease_seconds, now),
            )
            acquired = cursor.rowcount > 0
            await db.commit()

        logger.debug("Lock acquire attempted", name=name, owner=owner, acquired=acquired)
        return acquired

    async def release_lock(self, name: str, owner: str) -> None:
        """Drop a lease if ``owner`` still holds it."""
        async with self._connect() as db:
            await db.execute(
                "DELETE FROM locks WHERE name = ? AND owner = ?", (name, owner)
            )
            await db.commit()

        logger.debug("Lock released", name=name, owner=owner)

    async def close(self) -> None:
        """Close storage (cleanup if needed)."""
        logger.info("Token cache closed")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
