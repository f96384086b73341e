"""vmfleet server: FastAPI application wiring the decommissioning workflow.

Startup:
1. Load config
2. Open the stage owner store and the pool manager index
3. Load pool drivers from entry points
4. Build the coordinator + retry handler and wire the HTTP router

Shutdown closes both databases.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from vmfleet.api import configure as configure_api
from vmfleet.api import router as api_router
from vmfleet.config import FleetConfig, load_config
from vmfleet.destroy import CleanupCoordinator, DestroyHandler
from vmfleet.metrics import FleetMetrics
from vmfleet.pool import Driver, PoolManager, load_drivers
from vmfleet.stage_state import StageStateRegistry
from vmfleet.store import StageOwnerStore

logger = logging.getLogger(__name__)


class FleetServer:
    """Owns every long-lived component of the control plane."""

    def __init__(
        self,
        config: FleetConfig,
        *,
        drivers: dict[str, Driver] | None = None,
        stage_state: StageStateRegistry | None = None,
    ):
        self.config = config
        self._drivers = drivers
        # Shared with the provisioning path, which populates it.
        self.stage_state = stage_state or StageStateRegistry()
        self.metrics = FleetMetrics()

        self.store: StageOwnerStore | None = None
        self.pool: PoolManager | None = None
        self.handler: DestroyHandler | None = None

    async def start(self) -> None:
        db_path = self.config.database_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("vmfleet server starting (db=%s)", db_path)

        self.store = StageOwnerStore(str(db_path))
        await self.store.initialize()

        drivers = self._drivers if self._drivers is not None else load_drivers()
        if not drivers:
            logger.warning("No pool drivers registered, every destroy will fail to terminate")
        self.pool = PoolManager(str(db_path), drivers)
        await self.pool.initialize()

        coordinator = CleanupCoordinator(
            store=self.store,
            pool=self.pool,
            stage_state=self.stage_state,
            metrics=self.metrics,
            config=self.config,
        )
        self.handler = DestroyHandler(coordinator)
        configure_api(self.handler, self.metrics)
        logger.info("vmfleet server started")

    async def stop(self) -> None:
        if self.pool:
            await self.pool.close()
        if self.store:
            await self.store.close()
        logger.info("vmfleet server stopped")


def create_app(
    config: FleetConfig | None = None,
    *,
    config_path: Path | None = None,
    drivers: dict[str, Driver] | None = None,
) -> FastAPI:
    """Create the FastAPI application."""
    server = FleetServer(config or load_config(config_path), drivers=drivers)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await server.start()
        yield
        await server.stop()

    app = FastAPI(
        title="vmfleet",
        version="0.1.0",
        description="Build VM fleet control plane",
        lifespan=lifespan,
    )
    app.state.server = server
    app.include_router(api_router)
    return app
