"""Stage-ownership store: SQLite-backed stage → pool mapping.

Provisioning writes one row per stage when it binds an instance; the destroy
workflow reads it to learn which pool owns the stage and deletes it once the
instance is gone. At most one row exists per stage runtime id.
"""

from __future__ import annotations

import logging

import aiosqlite

from vmfleet.models import StageOwnership

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS stage_owners (
    stage_runtime_id TEXT PRIMARY KEY,
    pool_name TEXT NOT NULL
);
"""


class StageOwnerStore:
    """SQLite-backed stage ownership records with async access."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open database and create tables."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.executescript(SCHEMA)
        await self._db.commit()
        logger.info("Stage owner store initialized: %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Store not initialized: call initialize() first")
        return self._db

    async def create(self, record: StageOwnership) -> StageOwnership:
        """Insert an ownership record (provisioning side).

        Raises:
            aiosqlite.IntegrityError: If the stage already has an owner.
        """
        await self.db.execute(
            "INSERT INTO stage_owners (stage_runtime_id, pool_name) VALUES (?, ?)",
            (record.stage_runtime_id, record.pool_name),
        )
        await self.db.commit()
        logger.info(
            "Created stage owner: %s (pool=%s)", record.stage_runtime_id, record.pool_name
        )
        return record

    async def find(self, stage_runtime_id: str) -> StageOwnership | None:
        cursor = await self.db.execute(
            "SELECT * FROM stage_owners WHERE stage_runtime_id = ?", (stage_runtime_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return StageOwnership(stage_runtime_id=row["stage_runtime_id"], pool_name=row["pool_name"])

    async def delete(self, stage_runtime_id: str) -> None:
        """Delete the ownership record. Deleting a missing record is not an error."""
        await self.db.execute(
            "DELETE FROM stage_owners WHERE stage_runtime_id = ?", (stage_runtime_id,)
        )
        await self.db.commit()
        logger.debug("Deleted stage owner: %s", stage_runtime_id)
