"""Tests for the pool manager instance index and driver dispatch."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from vmfleet.errors import NotFoundError
from vmfleet.models import Instance, OSType
from vmfleet.pool import Driver, PoolManager, load_drivers


class RecordingDriver:
    def __init__(self):
        self.destroyed: list[str] = []

    async def destroy(self, instances: list[Instance]) -> None:
        self.destroyed.extend(i.id for i in instances)


@pytest_asyncio.fixture
async def driver():
    return RecordingDriver()


@pytest_asyncio.fixture
async def pool(tmp_path, driver):
    pm = PoolManager(str(tmp_path / "test_pool.db"), {"linux-pool": driver})
    await pm.initialize()
    yield pm
    await pm.close()


def _instance(**kwargs) -> Instance:
    defaults = dict(
        id="i-1",
        name="runner-1",
        address="10.0.0.7",
        os=OSType.WINDOWS,
        arch="amd64",
        provider="google",
        pool_name="linux-pool",
        stage_runtime_id="stage-1",
        port=9079,
        ca_cert="-----BEGIN CERTIFICATE-----",
    )
    defaults.update(kwargs)
    return Instance(**defaults)


class TestInstanceIndex:
    async def test_lookup_by_stage(self, pool: PoolManager):
        await pool.add_instance(_instance())

        found = await pool.get_instance_by_stage_id("linux-pool", "stage-1")
        assert found is not None
        assert found.id == "i-1"
        assert found.os == OSType.WINDOWS
        assert found.provider == "google"
        assert found.ca_cert == "-----BEGIN CERTIFICATE-----"

    async def test_lookup_missing_stage(self, pool: PoolManager):
        assert await pool.get_instance_by_stage_id("linux-pool", "stage-x") is None

    async def test_port_is_optional(self, pool: PoolManager):
        await pool.add_instance(_instance(port=None))

        found = await pool.get_instance("i-1")
        assert found is not None
        assert found.port is None

    async def test_lookup_unknown_pool(self, pool: PoolManager):
        with pytest.raises(NotFoundError):
            await pool.get_instance_by_stage_id("mac-pool", "stage-1")


class TestDestroy:
    async def test_destroy_calls_driver_and_unindexes(self, pool: PoolManager, driver):
        await pool.add_instance(_instance())

        await pool.destroy("linux-pool", "i-1")

        assert driver.destroyed == ["i-1"]
        assert await pool.get_instance("i-1") is None

    async def test_second_destroy_is_not_found(self, pool: PoolManager):
        await pool.add_instance(_instance())
        await pool.destroy("linux-pool", "i-1")

        with pytest.raises(NotFoundError):
            await pool.destroy("linux-pool", "i-1")

    async def test_driver_failure_keeps_index(self, pool: PoolManager):
        await pool.add_instance(_instance())
        failing = AsyncMock()
        failing.destroy = AsyncMock(side_effect=RuntimeError("API error"))
        pool.register_driver("linux-pool", failing)

        with pytest.raises(RuntimeError):
            await pool.destroy("linux-pool", "i-1")

        assert await pool.get_instance("i-1") is not None

    async def test_unknown_pool(self, pool: PoolManager):
        with pytest.raises(NotFoundError):
            await pool.destroy("mac-pool", "i-1")


class TestLoadDrivers:
    def test_loads_entry_points(self):
        ep = MagicMock()
        ep.name = "linux-pool"
        ep.load.return_value = RecordingDriver
        with patch("vmfleet.pool.entry_points", return_value=[ep]):
            drivers = load_drivers()
        assert isinstance(drivers["linux-pool"], RecordingDriver)
        assert isinstance(drivers["linux-pool"], Driver)

    def test_broken_entry_point_skipped(self):
        bad = MagicMock()
        bad.name = "broken"
        bad.load.side_effect = ImportError("no module")
        with patch("vmfleet.pool.entry_points", return_value=[bad]):
            assert load_drivers() == {}
