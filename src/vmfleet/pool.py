"""Pool manager: instance index plus dispatch to per-pool cloud drivers.

Instances are indexed in SQLite by pool and stage runtime id. Actual VM
creation and deletion is delegated to a ``Driver`` registered per pool; the
cloud-specific drivers themselves live outside this package and are
discovered through the ``vmfleet.drivers`` entry-point group.
"""

from __future__ import annotations

import logging
from datetime import datetime
from importlib.metadata import entry_points
from typing import Protocol, runtime_checkable

import aiosqlite

from vmfleet.errors import NotFoundError
from vmfleet.models import Instance, OSType

logger = logging.getLogger(__name__)

DRIVER_ENTRY_POINT_GROUP = "vmfleet.drivers"

SCHEMA = """
CREATE TABLE IF NOT EXISTS instances (
    instance_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    address TEXT NOT NULL DEFAULT '',
    os TEXT NOT NULL,
    arch TEXT NOT NULL,
    provider TEXT NOT NULL DEFAULT '',
    pool_name TEXT NOT NULL,
    stage_runtime_id TEXT,
    port INTEGER,
    ca_cert TEXT,
    started_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_instances_stage ON instances(pool_name, stage_runtime_id);
"""


@runtime_checkable
class Driver(Protocol):
    """Cloud-provider driver for one pool."""

    async def destroy(self, instances: list[Instance]) -> None:
        """Terminate the given VMs. Must raise on failure."""
        ...


class PoolManager:
    """SQLite-indexed instances with per-pool driver dispatch."""

    def __init__(self, db_path: str, drivers: dict[str, Driver] | None = None):
        self.db_path = db_path
        self._drivers: dict[str, Driver] = dict(drivers or {})
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open database and create tables."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.executescript(SCHEMA)
        await self._db.commit()
        logger.info(
            "Pool manager initialized: %s (pools=%s)", self.db_path, sorted(self._drivers)
        )

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Pool manager not initialized: call initialize() first")
        return self._db

    def register_driver(self, pool_name: str, driver: Driver) -> None:
        self._drivers[pool_name] = driver

    def exists(self, pool_name: str) -> bool:
        return pool_name in self._drivers

    # ── Instance index ───────────────────────────────────────────────────

    async def add_instance(self, instance: Instance) -> Instance:
        """Index a freshly provisioned instance (provisioning side)."""
        await self.db.execute(
            """INSERT INTO instances
               (instance_id, name, address, os, arch, provider, pool_name,
                stage_runtime_id, port, ca_cert, started_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                instance.id,
                instance.name,
                instance.address,
                instance.os.value,
                instance.arch,
                instance.provider,
                instance.pool_name,
                instance.stage_runtime_id,
                instance.port,
                instance.ca_cert,
                instance.started_at.isoformat(),
            ),
        )
        await self.db.commit()
        logger.info(
            "Indexed instance %s (pool=%s, stage=%s)",
            instance.id,
            instance.pool_name,
            instance.stage_runtime_id,
        )
        return instance

    async def get_instance_by_stage_id(
        self, pool_name: str, stage_runtime_id: str
    ) -> Instance | None:
        """Return the live instance bound to a stage, or None."""
        if not self.exists(pool_name):
            raise NotFoundError(f"pool {pool_name!r} not found")
        cursor = await self.db.execute(
            "SELECT * FROM instances WHERE pool_name = ? AND stage_runtime_id = ? LIMIT 1",
            (pool_name, stage_runtime_id),
        )
        row = await cursor.fetchone()
        return self._row_to_instance(row) if row else None

    async def get_instance(self, instance_id: str) -> Instance | None:
        cursor = await self.db.execute(
            "SELECT * FROM instances WHERE instance_id = ?", (instance_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_instance(row) if row else None

    # ── Termination ──────────────────────────────────────────────────────

    async def destroy(self, pool_name: str, instance_id: str) -> None:
        """Terminate an instance through its pool driver and drop it from the index.

        Raises:
            NotFoundError: Unknown pool, or the instance is no longer indexed.
        """
        driver = self._drivers.get(pool_name)
        if driver is None:
            raise NotFoundError(f"pool {pool_name!r} not found")

        instance = await self.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"instance {instance_id} not found")

        await driver.destroy([instance])

        await self.db.execute("DELETE FROM instances WHERE instance_id = ?", (instance_id,))
        await self.db.commit()
        logger.info("Destroyed instance %s (pool=%s)", instance_id, pool_name)

    @staticmethod
    def _row_to_instance(row: aiosqlite.Row) -> Instance:
        return Instance(
            id=row["instance_id"],
            name=row["name"],
            address=row["address"],
            os=OSType(row["os"]),
            arch=row["arch"],
            provider=row["provider"],
            pool_name=row["pool_name"],
            stage_runtime_id=row["stage_runtime_id"],
            port=row["port"],
            ca_cert=row["ca_cert"],
            started_at=datetime.fromisoformat(row["started_at"]),
        )


def load_drivers() -> dict[str, Driver]:
    """Instantiate drivers advertised under the ``vmfleet.drivers`` entry-point group.

    The entry-point name is the pool name; the target is a zero-argument
    callable returning a ``Driver``. A driver that fails to load is skipped.
    """
    drivers: dict[str, Driver] = {}
    for ep in entry_points(group=DRIVER_ENTRY_POINT_GROUP):
        try:
            factory = ep.load()
            drivers[ep.name] = factory()
        except Exception:
            logger.exception("Failed to load driver for pool %s (%s)", ep.name, ep.value)
            continue
        logger.info("Loaded driver for pool %s (%s)", ep.name, ep.value)
    return drivers
